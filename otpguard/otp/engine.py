"""
OTP Engine
==========
Issues, verifies and retires one-time codes and the reset tokens they unlock.

States per identity::

    EMPTY -> CODE_ACTIVE -> CONSUMED (registration)
                         -> RESET_TOKEN_ACTIVE (password reset) -> EMPTY
    CODE_ACTIVE -> EMPTY on expiry or exhausted attempts

Every expiry decision is made against the injected clock; the store TTL
only cleans up behind it.
"""

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from otpguard.config import OtpGuardConfig
from otpguard.exceptions import (
    AlreadyVerified,
    BackendUnavailable,
    DeliveryFailed,
    Expired,
    InvalidCode,
    InvalidInput,
    NotFound,
    OtpGuardError,
    TooManyAttempts,
)
from otpguard.identity import is_valid_password, mask_identity, normalize_identity
from otpguard.rate_limit.cooldown import IdentityRateLimiter
from otpguard.rate_limit.counters import RedisCounterStore
from .generator import CodeGenerator, generate_reset_token, hash_reset_token, verify_reset_token
from .hashing import CodeHasher
from .models import GenerateResult, OtpState, Purpose, VerifyResult
from .ports import Clock, Notifier, SystemClock, UserDirectory
from .store import OtpStateStore, RedisOtpStateStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class OtpEngine:
    """
    OTP lifecycle orchestrator.

    Usage:
        engine = OtpEngine.from_redis(redis_client, users, notifier)

        result = await engine.generate("alice@example.com", Purpose.PASSWORD_RESET)
        verified = await engine.verify("alice@example.com", "123456", Purpose.PASSWORD_RESET)
        await engine.complete_password_reset("alice@example.com", verified.reset_token, "N3w!Passw0rd")
    """

    def __init__(
        self,
        store: OtpStateStore,
        cooldown: IdentityRateLimiter,
        users: UserDirectory,
        notifier: Notifier,
        config: Optional[OtpGuardConfig] = None,
        generator: Optional[CodeGenerator] = None,
        hasher: Optional[CodeHasher] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or OtpGuardConfig()
        self.store = store
        self.cooldown = cooldown
        self.users = users
        self.notifier = notifier
        self.generator = generator or CodeGenerator(self.config.code_length)
        self.hasher = hasher or CodeHasher(self.config.hash_algorithm, self.config.bcrypt_rounds)
        self.clock = clock or SystemClock()

    @classmethod
    def from_redis(
        cls,
        redis_client: Any,
        users: UserDirectory,
        notifier: Notifier,
        config: Optional[OtpGuardConfig] = None,
    ) -> "OtpEngine":
        """Wire an engine onto one Redis client."""
        config = config or OtpGuardConfig()
        store = RedisOtpStateStore(redis_client, prefix=config.key_prefix)
        cooldown = IdentityRateLimiter.from_config(config, store, RedisCounterStore(redis_client))
        return cls(store, cooldown, users, notifier, config=config)

    @classmethod
    def from_url(
        cls,
        users: UserDirectory,
        notifier: Notifier,
        config: Optional[OtpGuardConfig] = None,
    ) -> "OtpEngine":
        """
        Wire an engine onto a client built from ``config.redis_url``.

        Usage:
            engine = OtpEngine.from_url(users, notifier, OtpGuardConfig.from_env())
        """
        config = config or OtpGuardConfig()
        client = aioredis.from_url(config.redis_url, decode_responses=True)
        return cls.from_redis(client, users, notifier, config=config)

    # Generation

    async def generate(
        self,
        email: str,
        purpose: Union[Purpose, str],
        force_resend: bool = False,
    ) -> GenerateResult:
        """
        Issue a code and hand it to the notifier.

        Unknown identities, and password resets for accounts that are not
        enabled, get the same result shape without anything being sent.

        Args:
            email: Identity as submitted
            purpose: What the code will authorize
            force_resend: Issue a fresh code even when the active one is kept

        Returns:
            GenerateResult with the cooldown before the next request

        Raises:
            InvalidInput: Blank identity or unknown purpose
            AlreadyVerified: Registration code requested for an enabled account
            RateLimited: Cooldown still active
            DeliveryFailed: Notifier failed; nothing stays issued
            BackendUnavailable: State store or user directory unreachable
        """
        identity = self._require_identity(email)
        purpose = self._require_purpose(purpose)
        try:
            return await self._generate(identity, purpose, force_resend)
        except RedisError as e:
            raise self._backend_error("generate", identity, e) from e

    async def _generate(self, identity: str, purpose: Purpose, force_resend: bool) -> GenerateResult:
        now = self.clock.now()

        account = await self._directory("find_by_identity", identity, self.users.find_by_identity)
        if account is None:
            logger.info("OTP requested for unknown identity", identity=mask_identity(identity))
            return self._generic_result(now)

        if purpose is Purpose.REGISTRATION and account.enabled:
            raise AlreadyVerified()
        if purpose is Purpose.PASSWORD_RESET and not account.enabled:
            logger.info("Password reset requested for inactive account", identity=mask_identity(identity))
            return self._generic_result(now)

        decision = await self.cooldown.check_and_extend(identity, now)
        state = decision.state

        if self._keeps_active_code(state, purpose, now, force_resend):
            await self.store.save(identity, state.with_cooldown(decision.cooldown_until), now)
            logger.info(
                "Active OTP kept, cooldown extended",
                identity=mask_identity(identity),
                purpose=purpose.value,
                cooldown_seconds=decision.cooldown_seconds,
            )
            return GenerateResult(decision.cooldown_seconds, decision.cooldown_until)

        code = self.generator.generate()
        code_hash = await self.hasher.hash_async(code)
        issued = state.start_otp(
            code_hash,
            purpose,
            now,
            timedelta(seconds=self.config.otp_ttl_seconds),
            decision.cooldown_until,
        )
        await self.store.save(identity, issued, now)
        await self._deliver(identity, code, purpose)

        logger.info(
            "OTP issued",
            identity=mask_identity(identity),
            purpose=purpose.value,
            cooldown_seconds=decision.cooldown_seconds,
        )
        return GenerateResult(decision.cooldown_seconds, decision.cooldown_until)

    def _keeps_active_code(self, state: OtpState, purpose: Purpose, now: datetime, force_resend: bool) -> bool:
        if self.config.reissue_active_code or force_resend:
            return False
        return state.has_code and state.purpose is purpose and not state.is_code_expired(now)

    def _generic_result(self, now: datetime) -> GenerateResult:
        seconds = self.config.resend_cooldown_seconds
        return GenerateResult(seconds, now + timedelta(seconds=seconds))

    async def _deliver(self, identity: str, code: str, purpose: Purpose) -> None:
        try:
            sent = await self.notifier.send_code(identity, code, purpose)
        except Exception as e:
            logger.error(
                "OTP delivery raised",
                identity=mask_identity(identity),
                purpose=purpose.value,
                error=str(e),
            )
            await self._rollback(identity)
            raise DeliveryFailed() from e

        if not sent:
            logger.error("OTP delivery rejected", identity=mask_identity(identity), purpose=purpose.value)
            await self._rollback(identity)
            raise DeliveryFailed()

    async def _rollback(self, identity: str) -> None:
        try:
            await self.store.delete(identity)
        except RedisError as e:
            # Left to expire with its TTL
            logger.error("OTP rollback failed", identity=mask_identity(identity), error=str(e))

    # Verification

    async def verify(self, email: str, code: str, purpose: Union[Purpose, str]) -> VerifyResult:
        """
        Check a submitted code.

        The attempt is counted before the hash comparison, so concurrent
        guesses can only tighten the lockout.

        Returns:
            VerifyResult; carries a single-use reset token for password resets

        Raises:
            InvalidCode: Wrong or blank code, with the attempts left
            NotFound: No active code for this identity and purpose
            Expired: The code expired (state removed)
            TooManyAttempts: Attempts exhausted (state removed)
            AlreadyVerified: Account was activated concurrently
            BackendUnavailable: State store or user directory unreachable
        """
        identity = self._require_identity(email)
        purpose = self._require_purpose(purpose)
        if not code or not code.strip():
            raise InvalidCode()
        try:
            return await self._verify(identity, code.strip(), purpose)
        except RedisError as e:
            raise self._backend_error("verify", identity, e) from e

    async def _verify(self, identity: str, code: str, purpose: Purpose) -> VerifyResult:
        now = self.clock.now()
        masked = mask_identity(identity)
        max_attempts = self.config.max_attempts

        state = await self.store.load(identity)
        if state is None or not state.has_code or state.purpose is not purpose:
            raise NotFound()

        if state.is_code_expired(now):
            await self.store.delete(identity)
            logger.info("Expired OTP presented", identity=masked, purpose=purpose.value)
            raise Expired()

        if state.attempts >= max_attempts:
            await self.store.delete(identity)
            raise TooManyAttempts()

        attempts = await self.store.increment_attempts(identity, state, now)

        if not await self.hasher.verify_async(code, state.code):
            failures = await self.cooldown.record_failure(identity)
            if attempts >= max_attempts:
                await self.store.delete(identity)
                logger.warning("OTP attempts exhausted", identity=masked, failures=failures)
                raise TooManyAttempts()
            logger.info("Invalid OTP", identity=masked, attempts=attempts, failures=failures)
            raise InvalidCode(attempts_remaining=max_attempts - attempts)

        await self.cooldown.reset_failures(identity)

        if purpose is Purpose.REGISTRATION:
            await self.store.delete(identity)
            if not await self._directory("activate", identity, self.users.activate):
                raise AlreadyVerified()
            logger.info("Account activated", identity=masked)
            return VerifyResult(purpose)

        token = generate_reset_token()
        expires_at = now + timedelta(seconds=self.config.reset_token_ttl_seconds)
        await self.store.save(
            identity,
            state.with_attempts(attempts).issue_reset_token(hash_reset_token(token), expires_at),
            now,
        )
        logger.info("Reset token issued", identity=masked)
        return VerifyResult(purpose, reset_token=token)

    # Reset tokens

    async def validate_reset_token(self, email: str, token: str) -> None:
        """
        Consume a reset token.

        The token is removed on every outcome, success or failure.

        Raises:
            NotFound: No active token
            Expired: Token expired
            InvalidCode: Token mismatch
        """
        identity = self._require_identity(email)
        try:
            await self._validate_reset_token(identity, token)
        except RedisError as e:
            raise self._backend_error("validate_reset_token", identity, e) from e

    async def _validate_reset_token(self, identity: str, token: str) -> None:
        now = self.clock.now()
        state = await self.store.load(identity)
        await self.store.delete(identity)

        if state is None or not state.has_reset_token:
            raise NotFound()
        if state.is_reset_token_expired(now):
            raise Expired()
        if not verify_reset_token(token, state.reset_token):
            logger.warning("Reset token mismatch", identity=mask_identity(identity))
            raise InvalidCode()

    async def complete_password_reset(self, email: str, token: str, new_password: str) -> None:
        """
        Consume a reset token and store the new password.

        The password is checked first so a weak password does not burn the token.

        Raises:
            InvalidInput: Password fails the strength policy
            NotFound, Expired, InvalidCode: As for validate_reset_token
            BackendUnavailable: User directory unreachable
        """
        identity = self._require_identity(email)
        if not is_valid_password(new_password):
            raise InvalidInput("Password does not meet the strength policy")

        await self.validate_reset_token(identity, token)
        await self._directory("update_password", identity, self.users.update_password, new_password)
        logger.info("Password reset completed", identity=mask_identity(identity))

    # Helpers

    @staticmethod
    def _require_identity(email: str) -> str:
        identity = normalize_identity(email)
        if not identity:
            raise InvalidInput("Email is required")
        return identity

    @staticmethod
    def _require_purpose(purpose: Union[Purpose, str]) -> Purpose:
        try:
            return Purpose(purpose)
        except ValueError as e:
            raise InvalidInput(f"Unknown purpose: {purpose}") from e

    async def _directory(self, operation: str, identity: str, call: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Call the user directory, translating its failures into BackendUnavailable."""
        try:
            return await call(identity, *args)
        except OtpGuardError:
            raise
        except Exception as e:
            logger.error(
                "User directory unavailable",
                operation=operation,
                identity=mask_identity(identity),
                error=str(e),
            )
            raise BackendUnavailable() from e

    @staticmethod
    def _backend_error(operation: str, identity: str, error: RedisError) -> BackendUnavailable:
        logger.error(
            "OTP state store unavailable",
            operation=operation,
            identity=mask_identity(identity),
            error=str(error),
        )
        return BackendUnavailable()
