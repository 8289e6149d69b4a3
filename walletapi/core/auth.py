from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from walletapi.core.exceptions import AuthenticationError
from walletapi.schemas.auth import WalletUser

# 업스트림 인증 계층이 검증한 뒤 Bearer 토큰과 사용자 헤더를 함께 전달함
security = HTTPBearer(auto_error=False)

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"
USER_EMAIL_HEADER = "X-User-Email"
USER_CONTACT_HEADER = "X-User-Contact"


def _header(request: Request, name: str) -> Optional[str]:
    value = request.headers.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> WalletUser:
    """필수 사용자 확인 - Bearer 토큰과 X-User-Id 헤더가 필요함

    토큰은 검증하지 않고 플랫폼 백엔드로 그대로 전달합니다.
    이름/이메일이 없어도 401 이 아니며, 결제 시점에 검증 메시지로 처리됩니다.
    """
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Authentication required")

    user_id = _header(request, USER_ID_HEADER)
    if not user_id:
        raise AuthenticationError("Missing user identity", details={"header": USER_ID_HEADER})

    return WalletUser(
        id=user_id,
        token=credentials.credentials,
        name=_header(request, USER_NAME_HEADER),
        email=_header(request, USER_EMAIL_HEADER),
        contact=_header(request, USER_CONTACT_HEADER),
    )
