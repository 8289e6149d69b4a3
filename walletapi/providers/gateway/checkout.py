"""
호스팅 체크아웃 (Razorpay) 어댑터

게이트웨이와 통신하는 유일한 경로입니다.

- load_sdk(): 체크아웃 스크립트를 세션당 한 번만 불러옴 (로딩 중 호출은 같은 결과를 공유)
- initiate_payment(): 주문 생성 후 PendingPayment 반환. 결과는 체크아웃 페이지가 보내는
  success / failure / dismiss 콜백으로만 도착하며, 호출당 on_success / on_failure 중
  정확히 하나가 한 번 호출됩니다. 콜백이 끝내 오지 않으면 만료 타이머가 cancelled 로 종료합니다.
"""

import asyncio
import inspect
import logging
from decimal import Decimal
from typing import Dict, Optional

import httpx

from walletapi.config import Settings
from walletapi.core.exceptions import (
    GatewayUnavailableError,
    NotFoundError,
    PaymentCancelledError,
    PaymentDeclinedError,
)
from walletapi.providers.platform.client import PlatformAPIClient, PlatformAPIError
from walletapi.schemas.payments import (
    CODE_CHECKOUT_EXPIRED,
    CODE_INITIATION_ERROR,
    CODE_PAYMENT_CANCELLED,
    CODE_VERIFICATION_ERROR,
    CODE_VERIFICATION_FAILED,
    CheckoutOrder,
    GatewayFailure,
    PaymentConfirmation,
    PaymentRequest,
    PaymentResult,
)

logger = logging.getLogger(__name__)


class PendingPayment:
    """게이트웨이 호출 1회에 대한 단일 결과 (resolved 또는 rejected)"""

    def __init__(
        self,
        request: PaymentRequest,
        token: str,
        future: "asyncio.Future[PaymentResult]",
        order: Optional[CheckoutOrder] = None,
        user_id: Optional[str] = None,
    ):
        self.request = request
        self.token = token
        self.user_id = user_id
        self.order = order
        self._future = future
        self.verifying = False
        self.expiry: Optional[asyncio.TimerHandle] = None

    @property
    def order_id(self) -> Optional[str]:
        return self.order.order_id if self.order else None

    @property
    def done(self) -> bool:
        return self._future.done()

    async def outcome(self) -> PaymentResult:
        """성공 시 PaymentResult, 실패 시 PaymentDeclinedError / PaymentCancelledError"""
        return await asyncio.shield(self._future)


class CheckoutGateway:
    """Razorpay 체크아웃 어댑터"""

    def __init__(
        self,
        settings: Settings,
        platform_client: PlatformAPIClient,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._platform = platform_client
        self._script_url = settings.CHECKOUT_SCRIPT_URL
        self._key_id = settings.CHECKOUT_KEY_ID
        self._currency = settings.CHECKOUT_CURRENCY
        self._sdk_timeout = settings.CHECKOUT_SDK_TIMEOUT_SECONDS
        self._payment_timeout = settings.CHECKOUT_PAYMENT_TIMEOUT_SECONDS
        self._transport = transport

        self._sdk_loaded = False
        self._sdk_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, PendingPayment] = {}
        # 이미 종료된 주문 ID -> 주문한 사용자 ID (중복 콜백 판별용)
        self._settled: Dict[str, Optional[str]] = {}

    @property
    def sdk_loaded(self) -> bool:
        return self._sdk_loaded

    # =========================================================================
    # SDK loading
    # =========================================================================

    async def load_sdk(self) -> None:
        """체크아웃 스크립트 로딩 (멱등)

        Raises:
            GatewayUnavailableError: 제한 시간 내에 스크립트를 받지 못한 경우
        """
        if self._sdk_loaded:
            return

        task = self._sdk_task
        if task is None or (task.done() and (task.cancelled() or task.exception() is not None)):
            # 처음이거나 이전 시도가 실패한 경우에만 새로 로딩
            task = asyncio.ensure_future(self._fetch_sdk())
            self._sdk_task = task
        await asyncio.shield(task)

    async def _fetch_sdk(self) -> None:
        logger.info(f"Loading checkout SDK from {self._script_url}")
        try:
            async with httpx.AsyncClient(
                timeout=self._sdk_timeout, transport=self._transport
            ) as client:
                response = await asyncio.wait_for(
                    client.get(self._script_url), timeout=self._sdk_timeout
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning(f"Checkout SDK load timed out after {self._sdk_timeout}s")
            raise GatewayUnavailableError(
                "Payment system took too long to load",
                details={"script_url": self._script_url},
            ) from exc
        except httpx.RequestError as exc:
            logger.warning(f"Checkout SDK load failed: {exc}")
            raise GatewayUnavailableError(
                details={"script_url": self._script_url}
            ) from exc

        if response.status_code != 200:
            logger.warning(f"Checkout SDK load failed with HTTP {response.status_code}")
            raise GatewayUnavailableError(
                details={"script_url": self._script_url, "status": response.status_code}
            )

        self._sdk_loaded = True
        logger.info("Checkout SDK loaded")

    # =========================================================================
    # Payment
    # =========================================================================

    async def initiate_payment(
        self, request: PaymentRequest, token: str, user_id: Optional[str] = None
    ) -> PendingPayment:
        """결제 시작

        동기 반환값은 PendingPayment 뿐이며 결과는 콜백(또는 outcome())으로만 전달됩니다.
        주문 생성이 실패하거나 주문 응답이 잘못되어도 예외를 던지지 않고
        INITIATION_ERROR 실패로 종료합니다. user_id 가 있으면 콜백은 그 사용자만 보낼 수 있습니다.
        """
        future = asyncio.get_running_loop().create_future()
        pending = PendingPayment(request=request, token=token, future=future, user_id=user_id)

        if not self._sdk_loaded:
            self._settle_failure(
                pending,
                GatewayFailure(
                    code=CODE_INITIATION_ERROR,
                    description="Razorpay SDK not loaded",
                    source="client",
                    step="initiation",
                    reason="Setup error",
                ),
            )
            return pending

        try:
            order_data = await self._platform.create_payment_order(
                token, request.amount, request.coins
            )
        except PlatformAPIError as exc:
            logger.error(f"Failed to create payment order: {exc.message}")
            self._settle_failure(
                pending,
                GatewayFailure(
                    code=CODE_INITIATION_ERROR,
                    description=exc.message or "Failed to create payment order",
                    source="client",
                    step="initiation",
                    reason="Setup error",
                    metadata={"network": exc.network},
                ),
            )
            return pending

        try:
            order = self._build_order(request, order_data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error(f"Invalid payment order response: {exc}")
            self._settle_failure(
                pending,
                GatewayFailure(
                    code=CODE_INITIATION_ERROR,
                    description="Failed to create payment order",
                    source="server",
                    step="initiation",
                    reason="Invalid order response",
                ),
            )
            return pending

        pending.order = order
        self._pending[pending.order.order_id] = pending
        pending.expiry = asyncio.get_running_loop().call_later(
            self._payment_timeout, self._expire, pending.order.order_id
        )
        logger.info(
            f"Checkout opened: order={pending.order.order_id} amount={request.amount} coins={request.coins}"
        )
        return pending

    def _build_order(self, request: PaymentRequest, order_data: dict) -> CheckoutOrder:
        return CheckoutOrder(
            order_id=str(order_data["orderId"]),
            amount=int(order_data.get("amount") or int(request.amount * Decimal(100))),
            currency=order_data.get("currency") or self._currency,
            key_id=order_data.get("keyId") or self._key_id,
            coins=request.coins,
            script_url=self._script_url,
            prefill={
                "name": request.user.name,
                "email": request.user.email,
                "contact": request.user.contact,
            },
        )

    def get_pending(self, order_id: str, user_id: Optional[str] = None) -> Optional[PendingPayment]:
        """진행 중인 결제 조회. 이미 종료된 주문이면 None

        Raises:
            NotFoundError: 이 게이트웨이가 만든 적 없는 주문이거나 다른 사용자의 주문
        """
        pending = self._pending.get(order_id)
        if pending is None:
            if order_id in self._settled and self._owned_by(self._settled[order_id], user_id):
                logger.warning(f"Ignoring callback for settled order {order_id}")
                return None
            raise NotFoundError(f"Unknown checkout order: {order_id}")
        if not self._owned_by(pending.user_id, user_id):
            logger.warning(f"Rejecting callback for order {order_id} from user {user_id}")
            raise NotFoundError(f"Unknown checkout order: {order_id}")
        return pending

    @staticmethod
    def _owned_by(owner_id: Optional[str], user_id: Optional[str]) -> bool:
        return owner_id is None or user_id is None or owner_id == user_id

    async def complete(
        self, order_id: str, confirmation: PaymentConfirmation, user_id: Optional[str] = None
    ) -> bool:
        """체크아웃 성공 콜백 - 서버 서명 검증 후 성공 처리

        Returns:
            bool: 이번 호출로 결과가 확정되었는지 여부 (이미 종료된 결제는 False)
        """
        pending = self.get_pending(order_id, user_id)
        if pending is None or pending.done or pending.verifying:
            logger.warning(f"Ignoring duplicate success callback for order {order_id}")
            return False

        pending.verifying = True
        if confirmation.order_id != order_id:
            return self._settle_failure(
                pending,
                GatewayFailure(
                    code=CODE_VERIFICATION_FAILED,
                    description="Payment verification failed",
                    source="server",
                    step="verification",
                    reason="Order mismatch",
                ),
            )

        try:
            verified = await self._platform.verify_payment(pending.token, confirmation)
        except PlatformAPIError as exc:
            return self._settle_failure(
                pending,
                GatewayFailure(
                    code=CODE_VERIFICATION_ERROR,
                    description=exc.message or "Verification error",
                    source="server",
                    step="verification",
                    reason="Server error",
                ),
            )

        if not verified:
            return self._settle_failure(
                pending,
                GatewayFailure(
                    code=CODE_VERIFICATION_FAILED,
                    description="Payment verification failed",
                    source="server",
                    step="verification",
                    reason="Invalid signature",
                ),
            )

        result = PaymentResult(
            confirmation=confirmation,
            coins=pending.request.coins,
            amount=pending.request.amount,
        )
        return self._settle_success(pending, result)

    def fail(self, order_id: str, failure: GatewayFailure, user_id: Optional[str] = None) -> bool:
        """체크아웃 실패 콜백"""
        pending = self.get_pending(order_id, user_id)
        if pending is None:
            return False
        if pending.verifying:
            logger.warning(f"Ignoring failure callback during verification: order {order_id}")
            return False
        return self._settle_failure(pending, failure)

    def dismiss(self, order_id: str, user_id: Optional[str] = None) -> bool:
        """결제창이 닫힌 경우 (사용자 취소)"""
        pending = self.get_pending(order_id, user_id)
        if pending is None or pending.verifying:
            return False
        return self._settle_failure(
            pending,
            GatewayFailure(
                code=CODE_PAYMENT_CANCELLED,
                description="Payment was cancelled by user",
                source="user",
                step="payment",
                reason="User cancelled",
            ),
        )

    def _expire(self, order_id: str) -> None:
        pending = self._pending.get(order_id)
        if pending is None or pending.done or pending.verifying:
            return
        logger.warning(f"Checkout expired without callback: order {order_id}")
        self._settle_failure(
            pending,
            GatewayFailure(
                code=CODE_CHECKOUT_EXPIRED,
                description="Checkout session expired",
                source="client",
                step="payment",
                reason="Timeout",
            ),
        )

    async def shutdown(self) -> None:
        for order_id in list(self._pending):
            self._expire(order_id)

    # =========================================================================
    # Settlement (호출당 정확히 한 번)
    # =========================================================================

    def _settle_success(self, pending: PendingPayment, result: PaymentResult) -> bool:
        if pending.done:
            return False
        pending._future.set_result(result)
        self._cleanup(pending)
        logger.info(f"Payment succeeded: order={pending.order_id} coins={result.coins}")
        self._invoke(pending.request.on_success, result)
        return True

    def _settle_failure(self, pending: PendingPayment, failure: GatewayFailure) -> bool:
        if pending.done:
            return False
        message = failure.description or "Payment failed"
        details = failure.model_dump()
        if failure.is_cancelled:
            error = PaymentCancelledError(message, details=details)
        else:
            error = PaymentDeclinedError(message, details=details)
        pending._future.set_exception(error)
        # on_failure 로 전달되므로 미수신 예외 경고를 막기 위해 소비
        pending._future.exception()
        self._cleanup(pending)
        logger.warning(f"Payment failed: order={pending.order_id} code={failure.code} - {message}")
        self._invoke(pending.request.on_failure, failure)
        return True

    def _cleanup(self, pending: PendingPayment) -> None:
        if pending.expiry is not None:
            pending.expiry.cancel()
        if pending.order_id:
            self._pending.pop(pending.order_id, None)
            self._settled[pending.order_id] = pending.user_id

    @staticmethod
    def _invoke(callback, payload) -> None:
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                asyncio.ensure_future(outcome)
        except Exception:
            logger.exception("Payment callback raised")
