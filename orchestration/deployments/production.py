from orchestration.flows.retention_cleanup import ab_test_retention_cleanup

if __name__ == "__main__":
    # Daily, outside peak traffic; batches keep each delete transaction short
    ab_test_retention_cleanup.serve(
        name="ab-test-retention-daily",
        cron="0 3 * * *",
        tags=["production", "scheduled", "retention"],
    )
