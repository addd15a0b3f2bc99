from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.hashers import make_password
from django.core.validators import RegexValidator
from rest_framework import serializers

from .otp import PURPOSES

User = get_user_model()

# Роли, которые можно выбрать при самостоятельной регистрации
SELF_REGISTER_ROLES = ('student', 'faculty', 'teacher')

otp_format_validator = RegexValidator(
    regex=rf'^\d{{{settings.OTP_LENGTH}}}$',
    message=f'OTP must be exactly {settings.OTP_LENGTH} digits',
)


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'role', 'is_active', 'is_email_verified', 'date_joined']
        read_only_fields = fields


class RegisterSerializer(serializers.ModelSerializer):
    role = serializers.ChoiceField(choices=SELF_REGISTER_ROLES, default='student')

    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'password', 'role']
        extra_kwargs = {
            'password': {'write_only': True, 'min_length': 6},
            'name': {'required': True, 'allow_blank': False, 'min_length': 2},
            # уникальность проверяем сами, без учёта регистра
            'email': {'validators': []},
        }

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError('User with this email already exists')
        return value

    def validate_name(self, value):
        return value.strip()

    def create(self, validated_data):
        validated_data['password'] = make_password(validated_data['password'])
        return User.objects.create(**validated_data)


class EmailSerializer(serializers.Serializer):
    email = serializers.EmailField()

    def validate_email(self, value):
        return value.strip().lower()


class SendOtpSerializer(EmailSerializer):
    purpose = serializers.ChoiceField(choices=PURPOSES, default='verification')


class VerifyOtpSerializer(EmailSerializer):
    otp = serializers.CharField(validators=[otp_format_validator])


class LoginSerializer(EmailSerializer):
    password = serializers.CharField(write_only=True)


class ResetPasswordSerializer(VerifyOtpSerializer):
    new_password = serializers.CharField(write_only=True, min_length=6)
