from typing import Optional

from api.backend import CalendarSyncService

# Global instances initialized at startup
sync_service: Optional[CalendarSyncService] = None
