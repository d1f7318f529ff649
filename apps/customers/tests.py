from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.customers.models import Customer, CustomerFinancialProfile

User = get_user_model()


def profile_payload(**overrides):
    payload = {
        "national_id": "199012345678",
        "bank_name": "Commercial Bank",
        "bank_branch": "Kandy",
        "account_number": "800112233",
        "company_name": "Hill Country Tea",
        "company_phone": "0812223344",
        "company_email": "hr@hillcountry.example",
        "job_position": "Supervisor",
        "monthly_income": "150000.00",
        "existing_loans": [
            {"creditor": "Peoples Bank", "amount": "200000.00", "monthly_payment": "12000.00"},
            {"creditor": "Leasing Co", "amount": "50000.00", "monthly_payment": "3500.50", "loan_type": "lease"},
        ],
    }
    payload.update(overrides)
    return payload


class CustomerApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_cust", password="admin123", role="ADMIN")
        self.cashier = User.objects.create_user(username="cashier_cust", password="cashier123", role="CASHIER")

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_create_upserts_by_normalized_phone(self):
        self.auth_as("cashier_cust", "cashier123")
        first = self.client.post("/api/v1/customers/", {"name": "Nimal", "phone": "077-123 4567"}, format="json")
        self.assertEqual(first.status_code, 201)
        second = self.client.post(
            "/api/v1/customers/",
            {"name": "Nimal Perera", "phone": "0771234567", "email": "nimal@example.com"},
            format="json",
        )
        self.assertEqual(second.status_code, 201)
        self.assertEqual(first.data["id"], second.data["id"])
        customer = Customer.objects.get(phone_normalized="0771234567")
        self.assertEqual(customer.name, "Nimal Perera")
        self.assertEqual(customer.email, "nimal@example.com")
        self.assertEqual(AuditLog.objects.filter(action="customer.upsert").count(), 2)

    def test_search_by_phone_and_name(self):
        Customer.objects.create(name="Kamal", phone="0711111111")
        Customer.objects.create(name="Sunil", phone="0722222222")
        self.auth_as("cashier_cust", "cashier123")

        by_phone = self.client.get("/api/v1/customers/", {"phone": "071 111 1111"})
        self.assertEqual(by_phone.status_code, 200)
        self.assertEqual([row["name"] for row in by_phone.data["results"]], ["Kamal"])

        by_name = self.client.get("/api/v1/customers/", {"q": "sun"})
        self.assertEqual([row["name"] for row in by_name.data["results"]], ["Sunil"])

    def test_unauthenticated_requests_are_rejected(self):
        response = self.client.get("/api/v1/customers/")
        self.assertEqual(response.status_code, 401)


class FinancialProfileApiTests(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin_fin", password="admin123", role="ADMIN")
        self.cashier = User.objects.create_user(username="cashier_fin", password="cashier123", role="CASHIER")
        self.customer = Customer.objects.create(name="Ruwan", phone="0770000001")
        self.url = f"/api/v1/customers/{self.customer.id}/financial-profile/"

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_create_profile_derives_loan_totals(self):
        self.auth_as("cashier_fin", "cashier123")
        response = self.client.post(self.url, profile_payload(), format="json")
        self.assertEqual(response.status_code, 201)
        profile = CustomerFinancialProfile.objects.get(customer=self.customer)
        self.assertTrue(profile.has_existing_loans)
        self.assertEqual(profile.total_monthly_obligations, Decimal("15500.50"))
        self.assertFalse(profile.is_verified)
        self.assertTrue(AuditLog.objects.filter(action="financial_profile.create", entity_id=str(profile.id)).exists())

    def test_second_profile_for_customer_is_rejected(self):
        self.auth_as("cashier_fin", "cashier123")
        self.client.post(self.url, profile_payload(), format="json")
        again = self.client.post(self.url, profile_payload(national_id="200011112222"), format="json")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.data["code"], "invalid_state")
        self.assertEqual(CustomerFinancialProfile.objects.count(), 1)

    def test_duplicate_national_id_is_a_validation_error(self):
        other = Customer.objects.create(name="Saman", phone="0770000002")
        self.auth_as("cashier_fin", "cashier123")
        self.client.post(self.url, profile_payload(), format="json")
        response = self.client.post(f"/api/v1/customers/{other.id}/financial-profile/", profile_payload(), format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("national_id", response.data["fields"])

    def test_expiry_must_follow_issue_date(self):
        self.auth_as("cashier_fin", "cashier123")
        response = self.client.post(
            self.url,
            profile_payload(national_id_issued_date="2020-05-01", national_id_expiry_date="2019-05-01"),
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("national_id_expiry_date", response.data["fields"])

    def test_missing_profile_returns_not_found(self):
        self.auth_as("cashier_fin", "cashier123")
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "not_found")

    def test_only_admin_can_verify(self):
        self.auth_as("cashier_fin", "cashier123")
        self.client.post(self.url, profile_payload(), format="json")
        forbidden = self.client.post(f"{self.url}verify/", {}, format="json")
        self.assertEqual(forbidden.status_code, 403)

        self.auth_as("admin_fin", "admin123")
        verified = self.client.post(f"{self.url}verify/", {}, format="json")
        self.assertEqual(verified.status_code, 200)
        self.assertTrue(verified.data["is_verified"])
        self.assertEqual(verified.data["verified_by_username"], "admin_fin")

    def test_update_clears_verification(self):
        self.auth_as("admin_fin", "admin123")
        self.client.post(self.url, profile_payload(), format="json")
        self.client.post(f"{self.url}verify/", {}, format="json")

        response = self.client.patch(self.url, {"monthly_income": "175000.00"}, format="json")
        self.assertEqual(response.status_code, 200)
        profile = CustomerFinancialProfile.objects.get(customer=self.customer)
        self.assertEqual(profile.monthly_income, Decimal("175000.00"))
        self.assertFalse(profile.is_verified)
        self.assertIsNone(profile.verified_by)
        audit = AuditLog.objects.get(action="financial_profile.update")
        self.assertTrue(audit.payload["verification_cleared"])
