import pytest

from domains.accounts.models import Organization, UserRole


@pytest.mark.django_db
class TestUserModel:
    def test_admin_role_grants_staff(self, user_factory):
        u = user_factory(role=UserRole.ADMIN)
        assert u.is_staff
        assert u.is_admin_role

    def test_role_change_syncs_staff(self, user_factory):
        """role 을 내리면 저장 시 is_staff 도 해제"""
        u = user_factory(role=UserRole.ADMIN)
        u.role = UserRole.USER
        u.save()
        u.refresh_from_db()
        assert not u.is_staff

    def test_superuser_stays_staff(self, user_factory):
        u = user_factory(is_superuser=True)
        assert u.is_staff

    def test_str(self, user_factory):
        assert str(user_factory(email="ops@example.com")) == "ops@example.com"


@pytest.mark.django_db
def test_organization_members(organization, user_factory):
    u = user_factory(organization=organization)
    assert str(organization) == "Acme Logistics"
    assert list(organization.members.all()) == [u]
    assert Organization.objects.count() == 1
