"""Doctor directory service.

Read-mostly lookups used by booking and payment issuing; individual doctors
and list pages are cached in Redis when a cache manager is supplied.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.redis_client import CacheManager
from app.models.doctors import doctors
from app.schemas.doctors import DoctorCreate


class DoctorService:
    """Service for doctor operations."""

    # Cache TTL in seconds
    DOCTOR_CACHE_TTL = 900  # 15 minutes for individual doctors
    DOCTOR_LIST_CACHE_TTL = 300  # 5 minutes for lists

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager

    @staticmethod
    def _get_doctor_cache_key(doctor_id: UUID) -> str:
        """Generate cache key for doctor."""
        return f"doctor:{doctor_id}"

    @staticmethod
    def _get_list_cache_key(skip: int, limit: int, specialty: str | None) -> str:
        """Generate cache key for a list page."""
        return f"doctor:list:{skip}:{limit}:{(specialty or '').lower()}"

    async def create_doctor(self, db: AsyncSession, doctor_data: DoctorCreate) -> dict:
        """Create a new doctor profile."""
        query = doctors.insert().values(**doctor_data.model_dump()).returning(doctors)

        result = await db.execute(query)
        doctor = result.mappings().first()

        if not doctor:
            raise ValueError("Failed to create doctor")

        await db.commit()

        # Invalidate cache
        if self.cache:
            self.cache.delete_pattern("doctor:list:*")

        return dict(doctor)

    async def get_doctor_by_id(self, db: AsyncSession, doctor_id: UUID) -> dict | None:
        """Get doctor by ID with caching."""
        if self.cache:
            cached = self.cache.get_json(self._get_doctor_cache_key(doctor_id))
            if cached:
                return cached

        result = await db.execute(select(doctors).where(doctors.c.id == doctor_id))
        doctor = result.mappings().first()

        if not doctor:
            return None

        doctor_dict = dict(doctor)

        if self.cache:
            self.cache.set_json(
                self._get_doctor_cache_key(doctor_id), doctor_dict, ttl=self.DOCTOR_CACHE_TTL
            )

        return doctor_dict

    async def get_doctors(
        self,
        db: AsyncSession,
        skip: int = 0,
        limit: int = 20,
        specialty: str | None = None,
    ) -> dict:
        """Get a page of doctors, optionally filtered by specialty."""
        cache_key = self._get_list_cache_key(skip, limit, specialty)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return cached

        conditions = []
        if specialty:
            conditions.append(doctors.c.specialty.ilike(f"%{specialty}%"))

        total_result = await db.execute(
            select(func.count()).select_from(doctors).where(*conditions)
        )
        total = total_result.scalar() or 0

        result = await db.execute(
            select(doctors)
            .where(*conditions)
            .order_by(doctors.c.years_of_experience.desc(), doctors.c.name)
            .offset(skip)
            .limit(limit)
        )
        page = {
            "total": total,
            "skip": skip,
            "limit": limit,
            "items": [dict(row) for row in result.mappings().all()],
        }

        if self.cache:
            self.cache.set_json(cache_key, page, ttl=self.DOCTOR_LIST_CACHE_TTL)

        return page
