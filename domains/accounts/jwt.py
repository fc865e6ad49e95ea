# domains/accounts/jwt.py
from django.contrib.auth import get_user_model
from django.contrib.auth.hashers import check_password

from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.views import TokenObtainPairView

User = get_user_model()


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    # 입력 필드로 email 사용 (폼/스키마용)
    username_field = "email"

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        # 클라이언트가 조직 스코프를 바로 알 수 있도록 클레임 추가
        token["org"] = str(user.organization_id) if user.organization_id else None
        token["role"] = user.role
        return token

    def validate(self, attrs):
        email = (attrs.get("email") or "").strip()
        password = attrs.get("password") or ""

        user = User.objects.filter(email__iexact=email).first()

        if (
            not user
            or not getattr(user, "is_active", True)
            or not check_password(password, user.password)
        ):
            raise AuthenticationFailed(
                detail="지정된 자격 증명에 해당하는 활성화된 사용자를 찾을 수 없습니다",
                code="no_active_account",
            )

        refresh = self.get_token(user)
        return {
            "refresh": str(refresh),
            "access": str(refresh.access_token),
        }


class EmailTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailTokenObtainPairSerializer
