import logging
from typing import List, Optional

from helpdesk.repositories.problem_repository import ProblemRepository
from helpdesk.repositories.user_repository import UserRepository
from helpdesk.schemas.user import PasswordChange, ProfilePublic, Session, UserCreate, UserSummary
from helpdesk.utils.file_storage import LocalFileStorage
from helpdesk.utils.security import hash_password, verify_password


logger = logging.getLogger(__name__)

ALLOWED_AVATAR_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


class UserService:
    """Business logic for accounts, roles and profiles"""

    def __init__(self, user_repository: UserRepository, problem_repository: Optional[ProblemRepository] = None):
        self.user_repository = user_repository
        self.problem_repository = problem_repository

    async def register_user(self, payload: UserCreate) -> Session:
        """
        Register a new account
        - reject an email that is already taken
        - hash the password
        - create the user, its role row and its profile
        """
        existing = await self.user_repository.get_user_by_email(payload.email)
        if existing:
            raise ValueError("Email already registered")

        new_id = await self.user_repository.create_user(
            email=payload.email,
            hashed_password=hash_password(payload.password),
        )
        await self.user_repository.add_role(new_id, payload.role)
        await self.user_repository.create_profile(new_id, payload.full_name)
        logger.info("Registered %s account %s", payload.role, new_id)

        return Session(user_id=new_id, role=payload.role, email=payload.email, full_name=payload.full_name)

    async def authenticate_user(self, email: str, password: str) -> Optional[dict]:
        """
        Check login credentials
        - look the user up by email
        - verify the password
        - return the user document when both match
        """
        user = await self.user_repository.get_user_by_email(email)
        if not user:
            return None

        if not verify_password(password, user.get("hashed_password", "")):
            return None

        return user

    async def get_session(self, user_id: str) -> Optional[Session]:
        user = await self.user_repository.get_user_by_id(user_id)
        if not user:
            return None
        role = await self.user_repository.get_role(user_id) or "student"
        full_name = await self.user_repository.get_full_name(user_id)
        return Session(user_id=user_id, role=role, email=user.get("email"), full_name=full_name)

    async def get_profile(self, session: Session) -> ProfilePublic:
        profile = await self.user_repository.get_profile(session.user_id) or {}
        return ProfilePublic(
            user_id=session.user_id,
            full_name=profile.get("full_name") or "",
            avatar_url=profile.get("avatar_url"),
            email=session.email,
            role=session.role,
        )

    async def update_profile(self, session: Session, full_name: str) -> ProfilePublic:
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValueError("Name cannot be empty")
        await self.user_repository.update_profile(session.user_id, {"full_name": full_name})
        return await self.get_profile(session)

    async def change_password(self, session: Session, payload: PasswordChange) -> None:
        if not payload.new_password or not payload.confirm_password:
            raise ValueError("Please fill in all password fields")
        if payload.new_password != payload.confirm_password:
            raise ValueError("New passwords do not match")
        if len(payload.new_password) < 6:
            raise ValueError("Password must be at least 6 characters")
        await self.user_repository.set_password(session.user_id, hash_password(payload.new_password))
        logger.info("Password changed for %s", session.user_id)

    async def upload_avatar(
        self,
        session: Session,
        storage: LocalFileStorage,
        filename: str,
        content_type: Optional[str],
        data: bytes,
        max_bytes: int,
    ) -> ProfilePublic:
        """
        Replace the profile picture
        - only images, at most ``max_bytes``
        - the previous file is removed before the new one is written
        """
        if content_type not in ALLOWED_AVATAR_TYPES:
            raise ValueError("Avatar must be a JPG, PNG, GIF or WebP image")
        if not data:
            raise ValueError("Avatar file is empty")
        if len(data) > max_bytes:
            raise ValueError("Avatar is larger than the allowed size")

        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else content_type.split("/")[-1]
        path = f"{session.user_id}/avatar.{ext}"

        profile = await self.user_repository.get_profile(session.user_id) or {}
        old_url = profile.get("avatar_url")
        if old_url:
            old_name = old_url.rsplit("/", 1)[-1]
            await storage.remove([f"{session.user_id}/{old_name}"])

        await storage.upload(path, data, upsert=True)
        await self.user_repository.update_profile(session.user_id, {"avatar_url": storage.get_public_url(path)})
        return await self.get_profile(session)

    async def list_users(self, search: Optional[str] = None) -> List[UserSummary]:
        profiles = await self.user_repository.list_profiles()
        needle = (search or "").strip().lower()
        users: List[UserSummary] = []
        for profile in profiles:
            full_name = profile.get("full_name") or ""
            if needle and needle not in full_name.lower():
                continue
            user_id = profile["user_id"]
            role = await self.user_repository.get_role(user_id) or "student"
            count = await self.problem_repository.count_by_submitter(user_id) if self.problem_repository else 0
            users.append(UserSummary(
                user_id=user_id,
                full_name=full_name,
                role=role,
                problem_count=count,
                created_at=profile.get("created_at"),
            ))
        return users
