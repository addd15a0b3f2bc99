from django.urls import path

from . import views

urlpatterns = [
    path('register', views.RegisterView.as_view(), name='auth-register'),
    path('register-with-otp', views.RegisterWithOtpView.as_view(), name='auth-register-with-otp'),
    path('send-otp', views.SendOtpView.as_view(), name='auth-send-otp'),
    path('resend-otp', views.ResendOtpView.as_view(), name='auth-resend-otp'),
    path('verify-otp', views.VerifyOtpView.as_view(), name='auth-verify-otp'),
    path('otp-status', views.OtpStatusView.as_view(), name='auth-otp-status'),
    path('verify-and-activate', views.VerifyAndActivateView.as_view(), name='auth-verify-and-activate'),
    path('login', views.LoginView.as_view(), name='auth-login'),
    path('login-with-otp', views.LoginWithOtpView.as_view(), name='auth-login-with-otp'),
    path('verify', views.SessionVerifyView.as_view(), name='auth-verify'),
    path('me', views.MeView.as_view(), name='auth-me'),
    path('logout', views.LogoutView.as_view(), name='auth-logout'),
    path('forgot-password', views.ForgotPasswordView.as_view(), name='auth-forgot-password'),
    path('reset-password', views.ResetPasswordView.as_view(), name='auth-reset-password'),
]
