import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import DeliveryFailed, InvalidInput, NotFound, RateLimited

from . import mail
from .authentication import get_session_token
from .otp import get_otp_service
from .serializers import (
    EmailSerializer, LoginSerializer, RegisterSerializer, ResetPasswordSerializer,
    SendOtpSerializer, UserSerializer, VerifyOtpSerializer,
)
from .sessions import get_session_store

logger = logging.getLogger(__name__)

User = get_user_model()


def set_session_cookie(response, token):
    response.set_cookie(
        settings.SESSION_COOKIE_NAME_LAB,
        token,
        max_age=settings.SESSION_TTL_SECONDS,
        httponly=True,
        secure=not settings.DEBUG,
        samesite='Lax',
    )
    return response


def clear_session_cookie(response):
    response.delete_cookie(settings.SESSION_COOKIE_NAME_LAB, samesite='Lax')
    return response


def start_session(user, payload, status_code=status.HTTP_200_OK):
    """Создаёт сессию и отдаёт ответ с cookie"""
    token = get_session_store().create(user)
    user.last_login = timezone.now()
    user.save(update_fields=['last_login'])
    return set_session_cookie(Response(payload, status=status_code), token)


def find_user(email):
    return User.objects.filter(email__iexact=email).first()


def check_otp_recipient(email, purpose):
    """
    Код регистрации - только для свободного email, остальные - только для существующего аккаунта
    """
    user = find_user(email)
    if purpose == 'registration' and user is not None:
        raise InvalidInput('User with this email already exists')
    if purpose != 'registration' and user is None:
        raise NotFound('User not found')


class PublicAPIView(APIView):
    """Эндпоинты без аутентификации: устаревшая cookie не должна им мешать"""
    authentication_classes = []
    permission_classes = [permissions.AllowAny]


# Регистрация: шаг 1, проверка данных и отправка кода
class RegisterView(PublicAPIView):
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = get_otp_service().send(serializer.validated_data['email'], 'registration')
        return Response({
            "message": "Verification code sent to your email",
            "data": result,
        })


class SendOtpView(PublicAPIView):
    def post(self, request):
        serializer = SendOtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data['email']
        purpose = serializer.validated_data['purpose']

        check_otp_recipient(email, purpose)
        result = get_otp_service().send(email, purpose)
        return Response({"message": "OTP sent successfully to your email", "data": result})


class ResendOtpView(PublicAPIView):
    def post(self, request):
        serializer = SendOtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data['email']
        purpose = serializer.validated_data['purpose']

        check_otp_recipient(email, purpose)
        result = get_otp_service().resend(email, purpose)
        return Response({"message": "OTP resent successfully", "data": result})


class VerifyOtpView(PublicAPIView):
    def post(self, request):
        serializer = VerifyOtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = get_otp_service().verify(
            serializer.validated_data['email'], serializer.validated_data['otp']
        )
        return Response({"message": "OTP verified successfully", "data": result})


class OtpStatusView(PublicAPIView):
    def get(self, request):
        serializer = EmailSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        return Response({"data": get_otp_service().status(serializer.validated_data['email'])})


# Регистрация: шаг 2, создание аккаунта после подтверждения кода
class RegisterWithOtpView(PublicAPIView):
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            get_otp_service().consume_verified(serializer.validated_data['email'], 'registration')
            user = serializer.save(is_active=True, is_email_verified=True)

        mail.send_welcome_email(user.email, user.name)
        logger.info(f"Зарегистрирован пользователь {user.email}")
        return start_session(
            user,
            {"message": "User registered successfully", "data": {"user": UserSerializer(user).data}},
            status_code=status.HTTP_201_CREATED,
        )


class VerifyAndActivateView(PublicAPIView):
    def post(self, request):
        serializer = VerifyOtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data['email']

        user = find_user(email)
        if user is None:
            raise NotFound('User not found')

        otp_service = get_otp_service()
        otp_service.verify(email, serializer.validated_data['otp'])
        user.is_active = True
        user.is_email_verified = True
        user.save(update_fields=['is_active', 'is_email_verified'])
        otp_service.clear(email)

        return Response({
            "message": "Account verified and activated successfully",
            "data": {"verified": True, "activated": True, "email": user.email},
        })


class LoginView(PublicAPIView):
    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = find_user(serializer.validated_data['email'])
        if not (user and user.check_password(serializer.validated_data['password'])):
            raise InvalidInput('Invalid credentials')
        if not user.is_active:
            raise InvalidInput('Account is deactivated')

        logger.info(f"Вход по паролю: {user.email}")
        return start_session(user, {"message": "Login successful", "data": {"user": UserSerializer(user).data}})


class LoginWithOtpView(PublicAPIView):
    def post(self, request):
        serializer = VerifyOtpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data['email']

        user = find_user(email)
        if user is None:
            raise NotFound('User not found')
        if not user.is_active:
            raise InvalidInput('Account is deactivated')

        otp_service = get_otp_service()
        otp_service.verify(email, serializer.validated_data['otp'])
        otp_service.consume_verified(email, 'login')

        logger.info(f"Вход по коду: {user.email}")
        return start_session(user, {"message": "Login successful", "data": {"user": UserSerializer(user).data}})


# Проверка cookie-сессии
class SessionVerifyView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response({
            "message": "Session is valid",
            "data": {"user": UserSerializer(request.user).data},
        })


# Профиль
class MeView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response({"data": UserSerializer(request.user).data})


class LogoutView(PublicAPIView):
    def post(self, request):
        get_session_store().delete(get_session_token(request))
        return clear_session_cookie(Response({"message": "Logged out successfully"}))


class ForgotPasswordView(PublicAPIView):
    GENERIC_MESSAGE = 'If an account with this email exists, a password reset code will be sent.'

    def post(self, request):
        serializer = EmailSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data['email']

        # Ответ одинаковый, чтобы не раскрывать, есть ли такой аккаунт
        user = find_user(email)
        if user is not None and user.is_active:
            try:
                get_otp_service().send(email, 'password-reset')
            except RateLimited:
                logger.info(f"Повторный запрос сброса пароля слишком рано: {email}")
            except DeliveryFailed:
                logger.error(f"Код сброса пароля для {email} не доставлен")
        else:
            logger.info(f"Запрошен сброс пароля для неизвестного email: {email}")

        return Response({"message": self.GENERIC_MESSAGE})


class ResetPasswordView(PublicAPIView):
    def post(self, request):
        serializer = ResetPasswordSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        email = serializer.validated_data['email']

        user = find_user(email)
        if user is None:
            raise NotFound('User not found')

        otp_service = get_otp_service()
        otp_service.verify(email, serializer.validated_data['otp'])
        otp_service.consume_verified(email, 'password-reset')

        user.set_password(serializer.validated_data['new_password'])
        user.save(update_fields=['password'])
        get_session_store().delete_for_user(user.pk)

        logger.info(f"Пароль изменён: {user.email}")
        return Response({"message": "Password has been reset successfully"})
