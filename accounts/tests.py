from django.urls import reverse
from rest_framework.test import APIClient, APITestCase
from rest_framework import status
from django.contrib.auth import get_user_model

User = get_user_model()


class RegisterTests(APITestCase):
    """Tests for /api/auth/register/."""

    def setUp(self):
        self.url = reverse("auth-register")

    def test_register_creates_user_and_signs_in(self):
        response = self.client.post(
            self.url,
            {
                "username": "newfan",
                "email": "NewFan@Example.com",
                "password": "a-long-Passphrase-42",
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["user"]["username"], "newfan")
        self.assertEqual(User.objects.get(username="newfan").email, "newfan@example.com")

        me = self.client.get(reverse("auth-me"))
        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.data["user"]["username"], "newfan")

    def test_register_rejects_weak_password(self):
        response = self.client.post(
            self.url,
            {"username": "weak", "email": "weak@example.com", "password": "123"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("password", response.data)
        self.assertFalse(User.objects.filter(username="weak").exists())

    def test_register_rejects_duplicate_email(self):
        User.objects.create_user(
            username="first", email="dup@example.com", password="testpass123"
        )

        response = self.client.post(
            self.url,
            {
                "username": "second",
                "email": "DUP@example.com",
                "password": "a-long-Passphrase-42",
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("email", response.data)


class SessionTests(APITestCase):
    """Tests for login, logout, /me and the CSRF cookie endpoint."""

    def setUp(self):
        self.user = User.objects.create_user(
            username="testuser",
            email="test@example.com",
            password="testpass123",
        )

    def test_me_requires_authentication(self):
        response = self.client.get(reverse("auth-me"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_login_with_valid_credentials(self):
        response = self.client.post(
            reverse("auth-login"),
            {"username": "testuser", "password": "testpass123"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["user"]["id"], self.user.id)
        self.assertEqual(
            self.client.get(reverse("auth-me")).status_code, status.HTTP_200_OK
        )

    def test_login_with_bad_password(self):
        response = self.client.post(
            reverse("auth-login"),
            {"username": "testuser", "password": "wrong"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_csrf_endpoint_sets_cookie(self):
        client = APIClient(enforce_csrf_checks=True)
        response = client.get(reverse("auth-csrf"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("csrftoken", response.cookies)
        self.assertTrue(response.data["csrf_token"])

    def test_logout_needs_csrf_token(self):
        client = APIClient(enforce_csrf_checks=True)
        client.login(username="testuser", password="testpass123")

        rejected = client.post(reverse("auth-logout"))
        self.assertEqual(rejected.status_code, 419)

        client.get(reverse("auth-csrf"))
        token = client.cookies["csrftoken"].value
        accepted = client.post(reverse("auth-logout"), HTTP_X_CSRFTOKEN=token)
        self.assertEqual(accepted.status_code, status.HTTP_200_OK)

        self.assertEqual(
            client.get(reverse("auth-me")).status_code,
            status.HTTP_401_UNAUTHORIZED,
        )
