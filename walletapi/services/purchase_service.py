import asyncio
import logging
import uuid
from decimal import Decimal
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from walletapi.config import Settings
from walletapi.core.exceptions import (
    BaseAPIException,
    ConflictError,
    GatewayUnavailableError,
    InternalServerError,
    NotFoundError,
    ValidationError,
)
from walletapi.providers.gateway.checkout import CheckoutGateway, PendingPayment
from walletapi.providers.platform.client import PlatformAPIError
from walletapi.schemas.auth import WalletUser
from walletapi.schemas.coins import CoinPackage
from walletapi.schemas.payments import (
    CheckoutOrder,
    GatewayFailure,
    PaymentRequest,
    PaymentResult,
    UserIdentity,
)
from walletapi.schemas.purchase import (
    ErrorAction,
    FlowKind,
    OpenPurchaseRequest,
    PurchaseSelection,
    PurchaseSessionSnapshot,
    PurchaseState,
    SessionError,
)
from walletapi.services.balance_service import BalanceService, BalanceStore
from walletapi.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

PurchaseCompleteCallback = Callable[[int], Any]


class PurchaseFlow:
    """구매 플로우 상태 머신 (모달 1개 = 세션 1개)

    idle -> loading -> selecting -> processing -> success | error
    error -> selecting (retry), processing 을 제외한 모든 상태 -> idle (close)

    하위 클래스는 선택지 조회(_fetch_options)와 선택 해석(_resolve_purchase)만 구현합니다.
    """

    kind = FlowKind.PACKAGE

    def __init__(
        self,
        session_id: str,
        user: WalletUser,
        gateway: CheckoutGateway,
        balance_store: BalanceStore,
        settings: Settings,
        identity: Optional[Dict[str, Optional[str]]] = None,
        on_purchase_complete: Optional[PurchaseCompleteCallback] = None,
        on_closed: Optional[Callable[[str], None]] = None,
        refresh_balance: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.session_id = session_id
        self.user = user
        self.gateway = gateway
        self.balance_store = balance_store
        self.settings = settings
        self.identity = identity or {
            "name": user.name,
            "email": user.email,
            "contact": user.contact,
        }
        self.on_purchase_complete = on_purchase_complete
        self.on_closed = on_closed
        self.refresh_balance = refresh_balance

        self.state = PurchaseState.IDLE
        self.error: Optional[SessionError] = None
        self.validation_message: Optional[str] = None
        self.sdk_error: Optional[str] = None
        self.purchased_coins = 0
        self.checkout: Optional[CheckoutOrder] = None
        self.closed = False

        # 늦게 도착한 카탈로그 응답을 버리기 위한 세대 번호
        self._generation = 0
        # processing 에피소드 번호 (콜백이 현재 에피소드의 것인지 확인)
        self._episode = 0
        self._load_task: Optional[asyncio.Task] = None
        self._sdk_task: Optional[asyncio.Task] = None
        self._close_handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[PendingPayment] = None

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    async def _fetch_options(self) -> Any:
        raise NotImplementedError

    def _apply_options(self, options: Any) -> None:
        raise NotImplementedError

    def _apply_selection(self, selection: PurchaseSelection) -> None:
        raise NotImplementedError

    def _clear_selection(self) -> None:
        raise NotImplementedError

    def _resolve_purchase(self) -> Tuple[Decimal, int]:
        """(루피 금액, 지급 코인) - 선택이 유효하지 않으면 ValidationError"""
        raise NotImplementedError

    def _snapshot_fields(self) -> Dict[str, Any]:
        return {}

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(self, new_state: PurchaseState) -> None:
        if new_state == self.state:
            return
        logger.info(
            f"Purchase session {self.session_id} ({self.kind.value}): "
            f"{self.state.value} -> {new_state.value}"
        )
        self.state = new_state

    def _is_stale(self, generation: int) -> bool:
        return self.closed or generation != self._generation

    async def open(self) -> PurchaseSessionSnapshot:
        """idle -> loading. 카탈로그 조회와 결제 SDK 로딩을 동시에 시작"""
        if self.state != PurchaseState.IDLE or self.closed:
            raise ConflictError(f"Purchase session already opened: {self.session_id}")

        self._start_sdk_preload()
        await self._load()
        return self.snapshot()

    async def reload(self) -> PurchaseSessionSnapshot:
        """카탈로그 전체 재조회 (카탈로그 에러의 복구 경로)"""
        if self.state not in (PurchaseState.ERROR, PurchaseState.SELECTING):
            raise ConflictError(f"Cannot reload purchase flow in state {self.state.value}")

        self.error = None
        self.validation_message = None
        self._clear_selection()
        self._start_sdk_preload()
        await self._load()
        return self.snapshot()

    async def _load(self) -> None:
        self._generation += 1
        self._transition(PurchaseState.LOADING)
        self._load_task = asyncio.ensure_future(self._run_load(self._generation))
        # close()로 취소되어도 예외 없이 반환
        await asyncio.wait({self._load_task})

    async def _run_load(self, generation: int) -> None:
        try:
            options = await self._fetch_options()
        except BaseAPIException as e:
            if self._is_stale(generation):
                return
            self._fail(e, ErrorAction.RELOAD)
            return

        if self._is_stale(generation):
            logger.info(f"Discarding late catalog response for session {self.session_id}")
            return
        self._apply_options(options)
        self._transition(PurchaseState.SELECTING)

    def _start_sdk_preload(self) -> None:
        if self.gateway.sdk_loaded:
            return
        if self._sdk_task is not None and not self._sdk_task.done():
            return
        self.sdk_error = None
        self._sdk_task = asyncio.ensure_future(self._preload_sdk())

    async def _preload_sdk(self) -> None:
        try:
            await self.gateway.load_sdk()
        except GatewayUnavailableError as e:
            self.sdk_error = e.message
            logger.warning(f"Checkout SDK unavailable for session {self.session_id}: {e.message}")

    def select(self, selection: PurchaseSelection) -> PurchaseSessionSnapshot:
        """selecting -> selecting. 선택만 바뀌고 다른 부수효과 없음"""
        if self.state != PurchaseState.SELECTING:
            raise ConflictError(f"Cannot change selection in state {self.state.value}")
        try:
            self._apply_selection(selection)
            self.validation_message = None
        except ValidationError as e:
            self.validation_message = e.message
        return self.snapshot()

    async def confirm(self) -> PurchaseSessionSnapshot:
        """selecting -> processing

        선택, SDK 로딩, 사용자 정보 중 하나라도 충족되지 않으면 selecting 에 머무르고
        validation_message 를 채웁니다.
        """
        if self.state == PurchaseState.PROCESSING:
            raise ConflictError("A payment is already in progress")
        if self.state != PurchaseState.SELECTING:
            raise ConflictError(f"Cannot confirm purchase in state {self.state.value}")

        episode = self._episode + 1
        try:
            amount, coins = self._resolve_purchase()
            self._ensure_gateway_ready()
            identity = self._resolve_identity()
            request = self._build_request(amount, coins, identity, episode)
        except ValidationError as e:
            self.validation_message = e.message
            logger.warning(f"Purchase confirm rejected for session {self.session_id}: {e.message}")
            return self.snapshot()

        self.validation_message = None
        self._episode = episode
        self._transition(PurchaseState.PROCESSING)

        try:
            self._pending = await self.gateway.initiate_payment(
                request, self.user.token, user_id=self.user.id
            )
        except (BaseAPIException, PlatformAPIError) as e:
            if self.state == PurchaseState.PROCESSING and self._episode == episode:
                self._fail(e, ErrorAction.RETRY)
            return self.snapshot()
        except Exception:
            # processing 에 남지 않도록 예상하지 못한 오류도 재시도 가능한 에러로 전환
            logger.exception(f"Unexpected error while starting payment for session {self.session_id}")
            if self.state == PurchaseState.PROCESSING and self._episode == episode:
                self._fail(InternalServerError("Failed to start payment"), ErrorAction.RETRY)
            return self.snapshot()

        self.checkout = self._pending.order
        return self.snapshot()

    async def wait_for_outcome(self) -> PurchaseSessionSnapshot:
        """진행 중인 결제가 끝날 때까지 대기 (롱폴링)"""
        pending = self._pending
        if pending is not None and not pending.done:
            try:
                await pending.outcome()
            except BaseAPIException:
                # 실패 내용은 콜백을 통해 self.error 에 이미 반영됨
                pass
        return self.snapshot()

    def _ensure_gateway_ready(self) -> None:
        if self.gateway.sdk_loaded:
            return
        message = self.sdk_error or "Payment system is still loading"
        # 실패한 경우 다시 로딩을 시작해 두고 이번 확인은 거절
        self._start_sdk_preload()
        raise ValidationError(message)

    def _build_request(
        self, amount: Decimal, coins: int, identity: UserIdentity, episode: int
    ) -> PaymentRequest:
        try:
            return PaymentRequest(
                amount=amount,
                coins=coins,
                user=identity,
                on_success=partial(self._handle_success, episode),
                on_failure=partial(self._handle_failure, episode),
            )
        except PydanticValidationError:
            raise ValidationError(
                "Selected option is not available for purchase",
                details={"amount": str(amount), "coins": coins},
            )

    def _resolve_identity(self) -> UserIdentity:
        try:
            return UserIdentity(
                name=self.identity.get("name") or "",
                email=self.identity.get("email") or "",
                contact=self.identity.get("contact") or "",
            )
        except PydanticValidationError:
            raise ValidationError("Please complete your profile (name and email) to continue")

    def _handle_success(self, episode: int, result: PaymentResult) -> None:
        """processing -> success. 코인은 지연 없이 즉시 적립"""
        if episode != self._episode or self.state != PurchaseState.PROCESSING:
            logger.warning(
                f"Ignoring success callback for session {self.session_id} "
                f"(episode {episode}, state {self.state.value})"
            )
            return

        self.purchased_coins = result.coins
        self.error = None
        self._transition(PurchaseState.SUCCESS)
        self.balance_store.apply_optimistic_credit(result.coins)

        if self.on_purchase_complete is not None:
            try:
                self.on_purchase_complete(result.coins)
            except Exception:
                logger.exception(f"on_purchase_complete failed for session {self.session_id}")

        self._close_handle = asyncio.get_running_loop().call_later(
            self.settings.PURCHASE_SUCCESS_CLOSE_DELAY_SECONDS, self._auto_close
        )

    def _handle_failure(self, episode: int, failure: GatewayFailure) -> None:
        """processing -> error. 메시지는 게이트웨이 실패 내용 우선"""
        if episode != self._episode or self.state != PurchaseState.PROCESSING:
            logger.warning(
                f"Ignoring failure callback for session {self.session_id} "
                f"(episode {episode}, state {self.state.value})"
            )
            return

        self.error = SessionError(
            code=failure.code,
            message=failure.description or "Payment failed",
            category="payment",
            retryable=True,
            action=ErrorAction.RETRY,
        )
        self._transition(PurchaseState.ERROR)

    def _fail(self, exc: Exception, action: ErrorAction) -> None:
        if isinstance(exc, BaseAPIException):
            self.error = SessionError(
                code=exc.error_code,
                message=exc.message,
                category=exc.category,
                retryable=exc.retryable,
                action=action,
            )
        elif isinstance(exc, PlatformAPIError):
            self.error = SessionError(
                code=exc.error_code.value,
                message=exc.message,
                category="network" if exc.network else "payment",
                retryable=True,
                action=action,
            )
        logger.warning(
            f"Purchase session {self.session_id} failed: {self.error.code if self.error else '-'} "
            f"{exc}"
        )
        self._transition(PurchaseState.ERROR)

    async def retry(self) -> PurchaseSessionSnapshot:
        """error -> selecting. 이전 결제를 재실행하지 않으며 다시 confirm 해야 함"""
        if self.state != PurchaseState.ERROR:
            raise ConflictError(f"Cannot retry in state {self.state.value}")
        if self.error is not None and self.error.action == ErrorAction.RELOAD:
            return await self.reload()

        self.error = None
        self.checkout = None
        self._pending = None
        self._transition(PurchaseState.SELECTING)
        return self.snapshot()

    def close(self) -> bool:
        """세션 종료. processing 중에는 무시됨

        Returns:
            bool: 실제로 닫혔는지 여부
        """
        if self.state == PurchaseState.PROCESSING:
            logger.warning(f"Ignoring close while processing payment: session {self.session_id}")
            return False
        if self.closed:
            return True

        self._generation += 1
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        if self._close_handle is not None:
            self._close_handle.cancel()
            self._close_handle = None

        self._clear_selection()
        self.error = None
        self.validation_message = None
        self.purchased_coins = 0
        self.checkout = None
        self._pending = None
        self._transition(PurchaseState.IDLE)
        self.closed = True

        if self.on_closed is not None:
            self.on_closed(self.session_id)
        return True

    def _auto_close(self) -> None:
        if self.state != PurchaseState.SUCCESS:
            return
        self.close()
        if self.settings.BALANCE_REFRESH_AFTER_SUCCESS and self.refresh_balance is not None:
            asyncio.ensure_future(self._refresh_after_success())

    async def _refresh_after_success(self) -> None:
        try:
            await self.refresh_balance()
        except BaseAPIException as e:
            logger.warning(f"Balance refresh after purchase failed: {e.message}")

    # =========================================================================
    # View
    # =========================================================================

    def _can_pay(self) -> bool:
        if self.state != PurchaseState.SELECTING or not self.gateway.sdk_loaded:
            return False
        try:
            self._resolve_purchase()
            self._resolve_identity()
        except ValidationError:
            return False
        return True

    def _preview(self) -> Tuple[Optional[Decimal], int]:
        try:
            return self._resolve_purchase()
        except ValidationError:
            return None, 0

    def snapshot(self) -> PurchaseSessionSnapshot:
        amount, total_coins = self._preview()
        return PurchaseSessionSnapshot(
            session_id=self.session_id,
            kind=self.kind,
            state=self.state,
            amount=amount,
            total_coins=total_coins,
            sdk_loaded=self.gateway.sdk_loaded,
            can_pay=self._can_pay(),
            can_close=self.state != PurchaseState.PROCESSING,
            validation_message=self.validation_message,
            error=self.error,
            purchased_coins=self.purchased_coins,
            checkout=self.checkout,
            closed=self.closed,
            **self._snapshot_fields(),
        )


class PackagePurchaseFlow(PurchaseFlow):
    """카탈로그 패키지 구매"""

    kind = FlowKind.PACKAGE

    def __init__(self, *args, catalog_service: CatalogService, **kwargs):
        super().__init__(*args, **kwargs)
        self.catalog_service = catalog_service
        self.packages: List[CoinPackage] = []
        self.selected_package_id: Optional[str] = None

    async def _fetch_options(self) -> List[CoinPackage]:
        catalog = await self.catalog_service.load_packages(self.user.token)
        return catalog.packages

    def _apply_options(self, options: List[CoinPackage]) -> None:
        self.packages = list(options)

    def _find_package(self, package_id: Optional[str]) -> Optional[CoinPackage]:
        for package in self.packages:
            if package.id == package_id:
                return package
        return None

    def _apply_selection(self, selection: PurchaseSelection) -> None:
        if not selection.package_id:
            raise ValidationError("Please select a coin package")
        if self._find_package(selection.package_id) is None:
            raise ValidationError(
                "Selected package is not available",
                details={"package_id": selection.package_id},
            )
        self.selected_package_id = selection.package_id

    def _clear_selection(self) -> None:
        self.selected_package_id = None

    def _resolve_purchase(self) -> Tuple[Decimal, int]:
        package = self._find_package(self.selected_package_id)
        if package is None:
            raise ValidationError("Please select a coin package")
        if package.total_coins <= 0:
            raise ValidationError(
                "Selected package is not available",
                details={"package_id": package.id},
            )
        return package.rupee_price, package.total_coins

    def _snapshot_fields(self) -> Dict[str, Any]:
        return {
            "packages": self.packages,
            "selected_package_id": self.selected_package_id,
        }


class PurchaseSessionManager:
    """사용자별 구매 세션 관리

    사용자당 열린 모달은 하나로 유지합니다. 새 플로우를 열면 이전 세션을 닫되,
    결제가 진행 중인 세션은 그대로 둡니다.
    """

    def __init__(
        self,
        settings: Settings,
        catalog_service: CatalogService,
        gateway: CheckoutGateway,
        balance_service: BalanceService,
        ledger_service=None,
    ):
        self.settings = settings
        self.catalog_service = catalog_service
        self.gateway = gateway
        self.balance_service = balance_service
        self.ledger_service = ledger_service
        self._sessions: Dict[str, PurchaseFlow] = {}

    def _flow_kwargs(self, user: WalletUser, request: Optional[OpenPurchaseRequest]) -> Dict[str, Any]:
        identity = {"name": user.name, "email": user.email, "contact": user.contact}
        if request is not None:
            for key, value in request.model_dump(exclude_none=True).items():
                identity[key] = value
        return {
            "session_id": uuid.uuid4().hex,
            "user": user,
            "gateway": self.gateway,
            "balance_store": self.balance_service.store_for(user.id),
            "settings": self.settings,
            "identity": identity,
            "on_purchase_complete": partial(self._on_purchase_complete, user),
            "on_closed": self._on_closed,
            "refresh_balance": partial(self.balance_service.refresh, user),
        }

    def _register(self, flow: PurchaseFlow) -> PurchaseFlow:
        for existing in list(self._sessions.values()):
            if existing.user.id == flow.user.id:
                existing.close()
        self._sessions[flow.session_id] = flow
        return flow

    async def open_package_flow(
        self, user: WalletUser, request: Optional[OpenPurchaseRequest] = None
    ) -> PurchaseSessionSnapshot:
        flow = self._register(
            PackagePurchaseFlow(
                catalog_service=self.catalog_service, **self._flow_kwargs(user, request)
            )
        )
        return await flow.open()

    async def open_topup_flow(
        self, user: WalletUser, request: Optional[OpenPurchaseRequest] = None
    ) -> PurchaseSessionSnapshot:
        from walletapi.services.topup_service import TopUpFlow

        flow = self._register(TopUpFlow(**self._flow_kwargs(user, request)))
        return await flow.open()

    def get(self, session_id: str, user: WalletUser) -> PurchaseFlow:
        flow = self._sessions.get(session_id)
        if flow is None or flow.user.id != user.id:
            raise NotFoundError(f"Purchase session not found: {session_id}")
        return flow

    def close(self, session_id: str, user: WalletUser) -> PurchaseSessionSnapshot:
        flow = self.get(session_id, user)
        flow.close()
        return flow.snapshot()

    def _on_closed(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def _on_purchase_complete(self, user: WalletUser, total_coins: int) -> None:
        logger.info(f"Purchase complete for user {user.id}: +{total_coins} coins")
        if self.ledger_service is not None:
            self.ledger_service.invalidate(user)

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)
