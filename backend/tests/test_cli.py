from __future__ import annotations

import pytest

import cli
from radio.session import ASSISTANT_NAME_PREFIX
from conftest import FakeProvider


def _seed(provider: FakeProvider) -> None:
    doc_a = provider.upload_document("a.pdf")
    doc_b = provider.upload_document("b.pdf")
    doc_keep = provider.upload_document("keep.pdf")
    ours = provider.create_index(f"{ASSISTANT_NAME_PREFIX}_extractor_0", [doc_a, doc_b])
    provider.create_index("someone-elses-store", [doc_keep])
    provider.create_assistant(name=f"{ASSISTANT_NAME_PREFIX}_script_writer", instructions="", index_id=ours, model="m")
    provider.create_assistant(name="support-bot", instructions="", index_id="vs_x", model="m")


def test_clean_only_touches_prefixed_resources():
    provider = FakeProvider()
    _seed(provider)

    counts = cli.clean_remote_resources(provider)

    assert counts == {"indexes": 1, "documents": 2, "assistants": 1, "failed": 0}
    assert [v["name"] for v in provider.indexes.values()] == ["someone-elses-store"]
    assert [v["name"] for v in provider.assistants.values()] == ["support-bot"]
    assert list(provider.documents.values()) == ["keep.pdf"]


def test_clean_reports_failures():
    provider = FakeProvider(fail_deletes=("assistant",))
    _seed(provider)

    counts = cli.clean_remote_resources(provider)
    assert counts["failed"] == 1
    assert counts["indexes"] == 1


def test_record_options_from_flags():
    args = cli.build_parser().parse_args(
        ["record", "-p", "a.pdf", "b.pdf", "-m", "5", "--language", "ko", "--retry-max-delay", "2000"]
    )
    options = cli._record_options(args)
    assert options == {
        "documents": ["a.pdf", "b.pdf"],
        "minute": 5.0,
        "language": "ko",
        "retry_max_delay": 2000,
    }


def test_record_requires_papers():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["record"])
