import pytest

from lms_jobs.core.exceptions import ProcessorNotFoundError, ValidationError
from lms_jobs.core.registries import Registry
from lms_jobs.jobs.processors import JobProcessorRegistry
from lms_jobs.jobs.registry_init import register_job_processors
from lms_jobs.jobs.types import JobType


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    # Test empty registry
    assert registry.list() == []

    # Test register and get
    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]
    assert registry.has("test_impl")
    assert not registry.has("nonexistent")

    # Test KeyError for missing implementation
    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_freeze():
    """Test that a frozen registry rejects new registrations."""
    registry = Registry[str]("Test")
    registry.register("impl1", "value1")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("impl2", "value2")
    assert registry.get("impl1") == "value1"


def test_every_job_type_has_a_processor(settings):
    registry = register_job_processors(JobProcessorRegistry(), settings=settings, freeze=False)

    for job_type in JobType:
        assert registry.has(job_type)
        assert registry.get_processor(job_type) is registry.get(job_type)


def test_register_freezes_outside_development():
    from lms_jobs.config.settings import Settings

    registry = register_job_processors(
        JobProcessorRegistry(), settings=Settings(environment="production")
    )
    assert registry.is_frozen()


def test_register_twice_keeps_existing_processors(settings):
    registry = register_job_processors(JobProcessorRegistry(), settings=settings, freeze=False)
    first = registry.get(JobType.PAYMENT_VERIFY)

    register_job_processors(registry, settings=settings, freeze=False)
    assert registry.get(JobType.PAYMENT_VERIFY) is first


def test_missing_processor_raises_structured_error():
    registry = JobProcessorRegistry()

    with pytest.raises(ProcessorNotFoundError) as exc_info:
        registry.get_processor(JobType.REFUND_PROCESS)

    assert str(exc_info.value) == "No processor found for job type: REFUND_PROCESS"
    assert exc_info.value.retryable is False
    # Still a KeyError for callers using plain registry semantics
    assert isinstance(exc_info.value, KeyError)


def test_validate_payload_returns_payload_unchanged(settings):
    registry = register_job_processors(JobProcessorRegistry(), settings=settings, freeze=False)
    payload = {"order_id": "order-1", "refund_amount": "12.5", "note": None}

    checked = registry.validate_payload(JobType.REFUND_PROCESS, payload)

    assert checked is payload
    assert checked == {"order_id": "order-1", "refund_amount": "12.5", "note": None}


def test_validate_payload_rejects_bad_payload(settings):
    registry = register_job_processors(JobProcessorRegistry(), settings=settings, freeze=False)

    with pytest.raises(ValidationError, match="Invalid payload for EMAIL_PASSWORD_RESET"):
        registry.validate_payload(JobType.EMAIL_PASSWORD_RESET, {"email": "not-an-email"})


def test_validate_payload_passes_through_unregistered_types():
    registry = JobProcessorRegistry()
    payload = {"anything": ["goes"]}

    assert registry.validate_payload(JobType.MOODLE_SYNC_USERS, payload) is payload
