"""
Authentication Service
======================

Business logic for user authentication, registration, and the billing
identity (User + Member) that webhook ingestion materializes for payers
who have never signed up.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import hash_password, hash_unusable_password, verify_password
from app.models.member import DEFAULT_MEMBERSHIP_TIER, Member, MembershipStatus
from app.models.user import User, UserRole
from app.schemas.auth import UserRegister
from app.utils.helpers import split_full_name

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively; store them trimmed and lower-cased."""
    return email.strip().lower()


class AuthService:
    """Service for authentication and identity operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        stmt = select(User).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_member_by_id(self, member_id: uuid.UUID) -> Optional[Member]:
        stmt = select(Member).where(Member.member_id == member_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_member_by_email(self, email: str) -> Optional[Member]:
        stmt = select(Member).where(Member.email == normalize_email(email))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_user(self, user_data: UserRegister) -> User:
        """
        Create a new user from the signup form.

        Raises:
            IntegrityError: if the email is already taken (checked by caller
                first; this only fires on a concurrent signup race).
        """
        user = User(
            email=normalize_email(user_data.email),
            password_hash=hash_password(user_data.password),
            full_name=user_data.full_name,
        )
        self.db.add(user)
        await self.db.flush()  # Get user_id

        return user

    async def authenticate_user(
        self,
        email: str,
        password: str,
    ) -> Optional[User]:
        """
        Authenticate user by email and password.

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_user_by_email(email)

        if user is None:
            return None

        if not verify_password(password, user.password_hash):
            return None

        # Update last login
        user.last_login = datetime.now(timezone.utc)

        return user

    # ---- Billing identity ----

    async def get_or_create_billing_user(
        self,
        email: str,
        full_name: Optional[str] = None,
    ) -> tuple[User, bool]:
        """
        Find the user for a payer email, creating a placeholder account if
        there is none.

        The placeholder gets an unusable password hash: it anchors billing
        identity and cannot log in until the owner resets the password.

        Returns:
            (user, created)
        """
        email = normalize_email(email)
        existing = await self.get_user_by_email(email)
        if existing is not None:
            return existing, False

        user = User(
            email=email,
            full_name=full_name or email.split("@")[0],
            password_hash=hash_unusable_password(),
            role=UserRole.EDITOR,
            email_verified=True,
        )

        try:
            async with self.db.begin_nested():
                self.db.add(user)
                await self.db.flush()
        except IntegrityError:
            # Concurrent first event for the same payer won the insert
            winner = await self.get_user_by_email(email)
            if winner is None:
                raise
            logger.info("User for %s created concurrently, using existing row", email)
            return winner, False

        logger.info("Created billing user %s for %s", user.user_id, email)
        return user, True

    async def get_or_create_member(
        self,
        user: User,
        email: str,
        full_name: Optional[str] = None,
        customer_id: Optional[str] = None,
        status: MembershipStatus = MembershipStatus.INACTIVE,
    ) -> tuple[Member, bool]:
        """
        Find or create the Member linked to ``user`` and make sure the link
        exists.

        Lookup order: the user's linked member, then a member with the same
        email. The customer id is recorded when the event carries one.

        Returns:
            (member, created)
        """
        email = normalize_email(email)
        member: Optional[Member] = None
        created = False

        if user.member_id is not None:
            member = await self.get_member_by_id(user.member_id)

        if member is None:
            member = await self.get_member_by_email(email)

        if member is None:
            first_name, last_name = split_full_name(full_name)
            member = Member(
                email=email,
                first_name=first_name or email.split("@")[0],
                last_name=last_name,
                membership_tier=DEFAULT_MEMBERSHIP_TIER,
                membership_status=status,
                paykickstart_customer_id=customer_id,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(member)
                    await self.db.flush()
                created = True
            except IntegrityError:
                member = await self.get_member_by_email(email)
                if member is None:
                    raise
                logger.info("Member for %s created concurrently, using existing row", email)

        if customer_id and member.paykickstart_customer_id != customer_id:
            member.paykickstart_customer_id = customer_id
            await self.db.flush()

        if user.member_id != member.member_id:
            await self._link_member(user, member)

        return member, created

    async def _link_member(self, user: User, member: Member) -> None:
        """Point ``user`` at ``member``; a member already owned by another user stays with it."""
        try:
            async with self.db.begin_nested():
                user.member_id = member.member_id
                await self.db.flush()
        except IntegrityError:
            # Savepoint rollback expired the user; reload the stored link
            await self.db.refresh(user)
            logger.warning(
                "Member %s is already linked to another user; user %s left unlinked",
                member.member_id,
                user.user_id,
            )
