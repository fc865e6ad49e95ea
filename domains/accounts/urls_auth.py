from django.urls import path

from rest_framework_simplejwt.views import TokenRefreshView

from .jwt import EmailTokenObtainPairView

app_name = "accounts_auth"

urlpatterns = [
    # 로그인 (email + password → access/refresh)
    path("token/", EmailTokenObtainPairView.as_view(), name="token_obtain_pair"),
    # 토큰 갱신
    path("token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
]
