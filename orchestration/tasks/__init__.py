from orchestration.tasks.retention import purge_expired_ab_test_records, purge_expired_records

__all__ = [
    "purge_expired_records",
    "purge_expired_ab_test_records",
]
