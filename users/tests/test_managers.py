import pytest

from users.models import User


@pytest.mark.django_db
def test_create_user():
    """Test creating a regular user"""
    user = User.objects.create_user(email="test@example.com", password="testpassword123")
    assert user.email == "test@example.com"
    assert user.check_password("testpassword123")
    assert not user.is_superuser
    assert not user.is_staff
    assert user.is_active


@pytest.mark.django_db
def test_create_user_without_email_raises():
    with pytest.raises(ValueError, match="email must be set"):
        User.objects.create_user(email="", password="testpassword123")


@pytest.mark.django_db
def test_create_superuser():
    """Test creating a superuser"""
    admin_user = User.objects.create_superuser(
        email="admin@example.com", password="adminpassword123"
    )
    assert admin_user.is_superuser
    assert admin_user.is_staff


@pytest.mark.django_db
def test_full_name_falls_back_to_email():
    user = User.objects.create_user(email="nobody@example.com", password="testpassword123")
    assert user.get_full_name() == "nobody@example.com"

    user.first_name = "Ada"
    user.last_name = "Lovelace"
    assert user.get_full_name() == "Ada Lovelace"
    assert str(user) == "Ada Lovelace <nobody@example.com>"
