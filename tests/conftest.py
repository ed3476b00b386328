"""Shared pytest fixtures and configuration."""

from collections.abc import Iterator

import pytest
from fake_libczi import FakeAttachment, FakeLibCZI, FakeSubBlock, build_container

from czibridge.config import Settings
from czibridge.utils.logging import clear_correlation_context, configure_logging


@pytest.fixture(autouse=True)
def reset_logging_context() -> Iterator[None]:
    """Reset correlation context between tests."""
    clear_correlation_context()
    yield
    clear_correlation_context()


@pytest.fixture
def test_settings() -> Settings:
    """Create a Settings instance with test-safe defaults."""
    return Settings(
        _env_file=None,
        LIBCZI_LIBRARY="/opt/libczi/liblibCZIAPI.so",
        LOG_LEVEL="DEBUG",
        LOG_FORMAT="console",
    )


@pytest.fixture
def configure_test_logging() -> Iterator[None]:
    """Configure logging for tests with console output."""
    configure_logging(level="DEBUG", log_format="console")
    yield


@pytest.fixture
def fake_lib() -> FakeLibCZI:
    """A fresh in-memory libCZIApi with small chunks to force many callbacks."""
    return FakeLibCZI(chunk_size=16)


@pytest.fixture
def gray8_sub_blocks() -> list[FakeSubBlock]:
    """Three 4x3 Gray8 sub-blocks along C with distinct payloads."""
    return [
        FakeSubBlock(
            pixels=bytes((c * 50 + i) % 256 for i in range(12)),
            width=4,
            height=3,
            x=c * 4,
            y=0,
            coordinate={"C": c, "S": 0},
            m_index=c,
        )
        for c in range(3)
    ]


@pytest.fixture
def sample_container(gray8_sub_blocks: list[FakeSubBlock]) -> bytes:
    """A container with three sub-blocks, two attachments and XML metadata."""
    return build_container(
        sub_blocks=gray8_sub_blocks,
        attachments=[
            FakeAttachment(name="Thumbnail", data=b"\x89PNG fake", content_type="PNG"),
            FakeAttachment(name="TimeStamps", data=bytes(range(40)), content_type="CZTIMS"),
        ],
        metadata="<ImageDocument><Metadata/></ImageDocument>",
    )
