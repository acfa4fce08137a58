import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from api.services.storage import MediaStore
from lib.models import MediaFile, RetrievalIntent

logger = logging.getLogger(__name__)

SEMANTIC_SEARCH_LIMIT = 10
ALL_FILES_LIMIT = 20


def local_now() -> datetime:
    return datetime.now().astimezone()


def day_window(day: datetime) -> Tuple[datetime, datetime]:
    """[00:00:00.000, 23:59:59.999] of the calendar day containing `day`"""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = day.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end


def _of_type(files: List[MediaFile], file_type: Optional[str]) -> List[MediaFile]:
    if not file_type:
        return files
    return [f for f in files if f.kind == file_type]


class MediaQueryResolver:
    def __init__(self, store: MediaStore, clock: Callable[[], datetime] = local_now):
        self.store = store
        self.clock = clock

    async def resolve(self, user_phone: str, intent: RetrievalIntent) -> List[MediaFile]:
        """Candidate files for an intent, most recent first. Empty list when nothing matches."""
        file_type = intent.fileType

        # A search query overrides type and timeframe entirely
        if intent.searchQuery:
            logger.info(f"🔍 Performing semantic search for: \"{intent.searchQuery}\"")
            results = await self.store.search_by_description(user_phone, intent.searchQuery, SEMANTIC_SEARCH_LIMIT)
            logger.info(f"✅ Semantic search found {len(results)} files")
            return results

        logger.info(f"🔎 Searching for {file_type or 'any'} files with timeframe: {intent.timeframe}")

        if intent.timeframe == 'latest':
            latest = await self.store.latest_by_type(user_phone, file_type)
            return [latest] if latest else []

        if intent.timeframe in ('today', 'yesterday'):
            day = self.clock()
            if intent.timeframe == 'yesterday':
                day = day - timedelta(days=1)
            start, end = day_window(day)
            files = await self.store.list_by_date_range(user_phone, start, end)
            return _of_type(files, file_type)

        # 'all', and a missing timeframe
        return await self.store.list_by_type(user_phone, file_type, ALL_FILES_LIMIT)
