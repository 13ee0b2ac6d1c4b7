"""Tests for the GitLab webhook adapter."""

import pytest

from app.ci_providers import WebhookProviderRegistry
from app.ci_providers.gitlab import normalize_status
from app.ci_providers.models import BuildStatus, CIProvider, LookupMode, MatchBy
from app.services.webhook_exceptions import MalformedWebhookError

from payloads import SHA, WEBHOOK_SECRET, gitlab_pipeline


@pytest.fixture
def adapter():
    return WebhookProviderRegistry.get(CIProvider.GITLAB)


@pytest.fixture
def pipeline(detached_pipeline):
    detached_pipeline.provider = "gitlab"
    detached_pipeline.repository_url = "https://gitlab.com/acme/api"
    return detached_pipeline


class TestIdentifyAndVerify:
    def test_project_url_target(self, adapter):
        headers = {"x-gitlab-event": "Pipeline Hook", "x-gitlab-event-uuid": "uuid-1"}

        target = adapter.identify(headers, gitlab_pipeline(), {}, {})

        assert target.event_type == "Pipeline Hook"
        assert target.lookup == LookupMode.REPOSITORY_URL
        assert target.key == "https://gitlab.com/acme/api"
        assert target.delivery_id == "uuid-1"

    def test_repository_homepage_fallback(self, adapter):
        body = {"repository": {"homepage": "https://gitlab.com/acme/api"}}

        target = adapter.identify({"x-gitlab-event": "Push Hook"}, body, {}, {})

        assert target.key == "https://gitlab.com/acme/api"

    def test_missing_project_is_malformed(self, adapter):
        with pytest.raises(MalformedWebhookError):
            adapter.identify({"x-gitlab-event": "Push Hook"}, {}, {}, {})

    def test_token_must_match(self, adapter):
        body = b"{}"

        assert adapter.verify(body, {"x-gitlab-token": WEBHOOK_SECRET}, WEBHOOK_SECRET) is True
        assert adapter.verify(body, {"x-gitlab-token": "nope"}, WEBHOOK_SECRET) is False
        assert adapter.verify(body, {}, WEBHOOK_SECRET) is False

    def test_no_secret_accepts_unless_required(self, adapter):
        assert adapter.verify(b"{}", {}, None) is True
        assert adapter.verify(b"{}", {}, None, require_secret=True) is False


class TestPipelineHook:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("created", BuildStatus.PENDING),
            ("waiting_for_resource", BuildStatus.PENDING),
            ("manual", BuildStatus.PENDING),
            ("running", BuildStatus.RUNNING),
            ("success", BuildStatus.SUCCESS),
            ("failed", BuildStatus.FAILURE),
            ("canceled", BuildStatus.CANCELED),
            ("skipped", BuildStatus.SKIPPED),
            ("bogus", BuildStatus.UNKNOWN),
            (None, BuildStatus.UNKNOWN),
        ],
    )
    def test_status_table(self, raw, expected):
        assert normalize_status(raw) == expected

    def test_successful_pipeline(self, adapter, pipeline):
        event = adapter.normalize("Pipeline Hook", gitlab_pipeline(), pipeline).event

        build = event.build
        assert build.external_id == "31"
        assert build.status == BuildStatus.SUCCESS.value
        assert build.started_at.isoformat() == "2024-05-01T10:00:00"
        assert build.finished_at.isoformat() == "2024-05-01T10:02:05"
        assert build.commit.sha == SHA
        assert build.commit.author.name == "Jane Dev"
        assert build.provider_url == "https://gitlab.com/acme/api/-/pipelines/31"
        assert event.match_by == MatchBy.COMMIT_SHA.value

    def test_pipeline_without_id_has_no_external_id(self, adapter, pipeline):
        payload = gitlab_pipeline()
        del payload["object_attributes"]["id"]

        build = adapter.normalize("Pipeline Hook", payload, pipeline).event.build

        assert build.external_id is None
        assert build.provider_url is None

    def test_other_branch_is_ignored(self, adapter, pipeline):
        result = adapter.normalize("Pipeline Hook", gitlab_pipeline(ref="develop"), pipeline)

        assert result.is_ignored

    def test_tag_pipelines_skip_branch_filter(self, adapter, pipeline):
        payload = gitlab_pipeline(ref="v1.2.0")
        payload["object_attributes"]["tag"] = True

        assert not adapter.normalize("Pipeline Hook", payload, pipeline).is_ignored

    def test_missing_sha_is_malformed(self, adapter, pipeline):
        payload = gitlab_pipeline()
        del payload["object_attributes"]["sha"]

        with pytest.raises(MalformedWebhookError):
            adapter.normalize("Pipeline Hook", payload, pipeline)


class TestPushAndMergeRequest:
    def test_push_uses_checkout_sha(self, adapter, pipeline):
        payload = {
            "object_kind": "push",
            "ref": "refs/heads/main",
            "checkout_sha": SHA,
            "user_name": "Jane Dev",
            "user_email": "jane@example.com",
            "project": {"web_url": "https://gitlab.com/acme/api"},
            "commits": [
                {"id": "c" * 40, "message": "older"},
                {"id": SHA, "message": "Bump dependencies", "url": "https://gitlab.com/c/1",
                 "author": {"name": "Jane Dev", "email": "jane@example.com"}},
            ],
        }

        event = adapter.normalize("Push Hook", payload, pipeline).event

        assert event.build.external_id == SHA
        assert event.build.status == BuildStatus.PENDING.value
        assert event.build.commit.message == "Bump dependencies"
        assert event.build.started_at is None
        assert event.build.commit.branch == "main"

    def test_branch_deletion_is_ignored(self, adapter, pipeline):
        payload = {"ref": "refs/heads/main", "checkout_sha": None, "commits": []}

        assert adapter.normalize("Push Hook", payload, pipeline).is_ignored

    def test_merge_request(self, adapter, pipeline):
        payload = {
            "object_kind": "merge_request",
            "user": {"username": "jdev", "avatar_url": "https://gitlab.com/a.png"},
            "object_attributes": {
                "iid": 7,
                "action": "open",
                "title": "Speed up tests",
                "target_branch": "main",
                "source_branch": "perf",
                "url": "https://gitlab.com/acme/api/-/merge_requests/7",
                "last_commit": {"id": SHA, "author": {"name": "Jane Dev", "email": "jane@example.com"}},
            },
        }

        build = adapter.normalize("Merge Request Hook", payload, pipeline).event.build

        assert build.external_id == "mr-7"
        assert build.commit.message == "MR !7: Speed up tests"
        assert build.commit.branch == "perf"

    def test_merged_merge_request_is_ignored(self, adapter, pipeline):
        payload = {"object_attributes": {"iid": 7, "action": "merge", "target_branch": "main"}}

        assert adapter.normalize("Merge Request Hook", payload, pipeline).is_ignored


class TestJobHook:
    def test_finished_job_only_reports_progress(self, adapter, pipeline):
        payload = {"sha": SHA, "pipeline_id": 31, "build_status": "success", "ref": "main"}

        build = adapter.normalize("Job Hook", payload, pipeline).event.build

        assert build.status == BuildStatus.RUNNING.value
        assert build.external_id == "31"

    def test_failed_job_fails_the_build(self, adapter, pipeline):
        payload = {"sha": SHA, "pipeline_id": 31, "build_status": "failed"}

        build = adapter.normalize("Job Hook", payload, pipeline).event.build

        assert build.status == BuildStatus.FAILURE.value


def test_unknown_hook_is_unsupported(adapter, pipeline):
    result = adapter.normalize("Wiki Page Hook", {}, pipeline)

    assert result.is_ignored
    assert result.recognized is False
