"""Tests for the GitHub webhook adapter."""

import pytest

from app.ci_providers import WebhookProviderRegistry
from app.ci_providers.github import map_run_status
from app.ci_providers.models import BuildStatus, CIProvider, LookupMode, MatchBy
from app.services.webhook_exceptions import MalformedWebhookError

from payloads import OTHER_SHA, REPO_URL, SHA, encode, github_check_run, github_headers, github_push, github_workflow_run


@pytest.fixture
def adapter():
    return WebhookProviderRegistry.get(CIProvider.GITHUB)


def _lower(headers: dict) -> dict:
    return {k.lower(): v for k, v in headers.items()}


class TestIdentify:
    def test_repository_url_target(self, adapter):
        body = github_push()
        headers = _lower(github_headers(encode(body), "push"))

        target = adapter.identify(headers, body, {}, {})

        assert target.event_type == "push"
        assert target.lookup == LookupMode.REPOSITORY_URL
        assert target.key == REPO_URL
        assert target.delivery_id == "delivery-1"

    def test_missing_repository_is_malformed(self, adapter):
        with pytest.raises(MalformedWebhookError):
            adapter.identify({"x-github-event": "push"}, {"ref": "refs/heads/main"}, {}, {})

    def test_missing_event_header_is_malformed(self, adapter):
        with pytest.raises(MalformedWebhookError):
            adapter.identify({}, github_push(), {}, {})


class TestVerify:
    def test_valid_signature(self, adapter):
        body = encode(github_push())
        headers = _lower(github_headers(body, "push", secret="abc"))

        assert adapter.verify(body, headers, "abc") is True

    def test_pipeline_without_secret_is_rejected(self, adapter):
        body = encode(github_push())
        headers = _lower(github_headers(body, "push", secret=""))

        assert adapter.verify(body, headers, None) is False


class TestPush:
    def test_matching_branch_creates_pending_build(self, adapter, detached_pipeline):
        result = adapter.normalize("push", github_push(), detached_pipeline)

        assert not result.is_ignored
        build = result.event.build
        assert build.status == BuildStatus.PENDING.value
        assert build.external_id == SHA
        assert build.commit.sha == SHA
        assert build.commit.branch == "main"
        assert build.commit.message == "Fix flaky login test"
        assert build.commit.author.name == "Octo Cat"
        assert build.commit.author.avatar_url == "https://avatars.example/octocat"
        assert build.started_at is None
        assert result.event.pipeline_ref == str(detached_pipeline.id)
        assert result.event.match_by == MatchBy.COMMIT_SHA.value

    def test_other_branch_is_ignored(self, adapter, detached_pipeline):
        result = adapter.normalize("push", github_push(ref="refs/heads/feature/x"), detached_pipeline)

        assert result.is_ignored
        assert result.recognized is True
        assert "feature/x" in result.ignored_reason

    def test_branch_pattern_is_not_consulted(self, adapter, detached_pipeline):
        detached_pipeline.branch_pattern = "release/.*"
        result = adapter.normalize("push", github_push(ref="refs/heads/release/1.0"), detached_pipeline)

        assert result.is_ignored

    def test_missing_head_commit_is_malformed(self, adapter, detached_pipeline):
        payload = github_push()
        payload["head_commit"] = None

        with pytest.raises(MalformedWebhookError):
            adapter.normalize("push", payload, detached_pipeline)

    def test_branch_deletion_is_ignored(self, adapter, detached_pipeline):
        payload = github_push()
        payload["head_commit"] = None
        payload["deleted"] = True

        assert adapter.normalize("push", payload, detached_pipeline).is_ignored


class TestPullRequest:
    def _payload(self, action="opened", base="main"):
        return {
            "action": action,
            "number": 5,
            "repository": {"html_url": REPO_URL},
            "pull_request": {
                "number": 5,
                "title": "Add caching",
                "html_url": f"{REPO_URL}/pull/5",
                "base": {"ref": base},
                "head": {"ref": "feature/cache", "sha": OTHER_SHA},
                "user": {"login": "dev1", "avatar_url": "https://avatars.example/dev1"},
            },
        }

    def test_opened_pull_request(self, adapter, detached_pipeline):
        result = adapter.normalize("pull_request", self._payload(), detached_pipeline)

        build = result.event.build
        assert build.external_id == "pr-5"
        assert build.commit.sha == OTHER_SHA
        assert build.commit.message == "PR #5: Add caching"
        assert build.commit.author.name == "dev1"

    def test_closed_action_is_ignored(self, adapter, detached_pipeline):
        result = adapter.normalize("pull_request", self._payload(action="closed"), detached_pipeline)

        assert result.is_ignored
        assert result.recognized is True

    def test_base_branch_mismatch_is_ignored(self, adapter, detached_pipeline):
        result = adapter.normalize("pull_request", self._payload(base="develop"), detached_pipeline)

        assert result.is_ignored


class TestWorkflowRun:
    @pytest.mark.parametrize(
        "status,conclusion,expected",
        [
            ("completed", "success", BuildStatus.SUCCESS),
            ("completed", "failure", BuildStatus.FAILURE),
            ("completed", "timed_out", BuildStatus.FAILURE),
            ("completed", "action_required", BuildStatus.FAILURE),
            ("completed", "cancelled", BuildStatus.CANCELED),
            ("completed", "skipped", BuildStatus.SKIPPED),
            ("completed", "something_new", BuildStatus.UNKNOWN),
            ("in_progress", None, BuildStatus.RUNNING),
            ("queued", None, BuildStatus.PENDING),
            ("waiting", None, BuildStatus.PENDING),
            ("mystery", None, BuildStatus.UNKNOWN),
        ],
    )
    def test_status_table(self, status, conclusion, expected):
        assert map_run_status(status, conclusion) == expected

    def test_in_progress_run(self, adapter, detached_pipeline):
        result = adapter.normalize("workflow_run", github_workflow_run(), detached_pipeline)

        build = result.event.build
        assert build.status == BuildStatus.RUNNING.value
        assert build.external_id == "9001"
        assert build.started_at.isoformat() == "2024-05-01T10:00:00"
        assert build.finished_at is None
        assert result.event.match_by == MatchBy.COMMIT_SHA.value

    def test_completed_run_sets_finished_at(self, adapter, detached_pipeline):
        payload = github_workflow_run(
            status="completed", conclusion="success", updated="2024-05-01T10:02:05Z"
        )

        build = adapter.normalize("workflow_run", payload, detached_pipeline).event.build

        assert build.status == BuildStatus.SUCCESS.value
        assert build.finished_at.isoformat() == "2024-05-01T10:02:05"

    def test_rerun_is_flagged_as_retry(self, adapter, detached_pipeline):
        payload = github_workflow_run(run_attempt=2)

        event = adapter.normalize("workflow_run", payload, detached_pipeline).event

        assert event.retry is True
        assert event.build.external_id == "9001:2"
        assert event.match_by == MatchBy.EXTERNAL_ID.value

    def test_run_without_id_has_no_external_id(self, adapter, detached_pipeline):
        payload = github_workflow_run()
        del payload["workflow_run"]["id"]

        build = adapter.normalize("workflow_run", payload, detached_pipeline).event.build

        assert build.external_id is None
        assert build.commit.sha == SHA


class TestCheckRun:
    def test_completed_check_run_never_creates(self, adapter, detached_pipeline):
        event = adapter.normalize("check_run", github_check_run(), detached_pipeline).event

        assert event.create_if_missing is False
        assert event.build.status == BuildStatus.FAILURE.value
        assert event.build.commit.sha == SHA

    def test_created_check_run_is_ignored(self, adapter, detached_pipeline):
        payload = github_check_run()
        payload["action"] = "created"

        assert adapter.normalize("check_run", payload, detached_pipeline).is_ignored


def test_unknown_event_is_unsupported(adapter, detached_pipeline):
    result = adapter.normalize("star", {"action": "created"}, detached_pipeline)

    assert result.is_ignored
    assert result.recognized is False
