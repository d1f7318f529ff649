from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core.management import call_command
from django.test import TestCase

from apps.accounts.models import UserRole
from apps.common.permissions import resolve_role

User = get_user_model()


class RoleTests(TestCase):
    def test_seed_roles_is_repeatable(self):
        call_command("seed_roles")
        call_command("seed_roles")
        self.assertEqual(set(Group.objects.values_list("name", flat=True)), {"ADMIN", "CASHIER"})

    def test_group_membership_overrides_role_field(self):
        call_command("seed_roles")
        user = User.objects.create_user(username="promoted", password="pw123456", role=UserRole.CASHIER)
        self.assertEqual(resolve_role(user), UserRole.CASHIER)
        user.groups.add(Group.objects.get(name="ADMIN"))
        self.assertEqual(resolve_role(user), UserRole.ADMIN)

    def test_owner_recipients_are_active_admins_with_email(self):
        User.objects.create_user(username="owner", password="pw123456", role=UserRole.ADMIN, email="owner@shop.example")
        User.objects.create_user(username="no_mail", password="pw123456", role=UserRole.ADMIN)
        User.objects.create_user(username="gone", password="pw123456", role=UserRole.ADMIN, email="gone@shop.example", is_active=False)
        User.objects.create_user(username="till", password="pw123456", role=UserRole.CASHIER, email="till@shop.example")
        self.assertEqual(list(User.owner_recipients().values_list("username", flat=True)), ["owner"])
