"""이벤트 유형 상수"""


class EventTypes:
    """이벤트 유형 문자열 상수"""

    # transactions
    TRANSACTIONS_REFRESHED = "transactions_refreshed"

    # update pipeline
    FUNDING_CONFIRMED = "funding_confirmed"
    METADATA_UPLOADED = "metadata_uploaded"
    COMPANION_SYNCED = "companion_synced"
