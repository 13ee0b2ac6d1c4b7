"""Sample provider payloads and request helpers shared by the test modules."""

import json

from app.ci_providers.models import SignatureScheme
from app.services.signature import compute_signature

WEBHOOK_SECRET = "s3cret-token"
REPO_URL = "https://github.com/acme/api"
SHA = "a" * 40
OTHER_SHA = "b" * 40


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def github_headers(body: bytes, event: str, secret: str = WEBHOOK_SECRET) -> dict:
    return {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "delivery-1",
        "X-Hub-Signature-256": compute_signature(
            body, secret, SignatureScheme.HMAC_SHA256_PREFIXED
        ),
    }


def github_push(ref: str = "refs/heads/main", sha: str = SHA, repo_url: str = REPO_URL) -> dict:
    return {
        "ref": ref,
        "before": "0" * 40,
        "after": sha,
        "repository": {"full_name": "acme/api", "html_url": repo_url},
        "sender": {"login": "octocat", "avatar_url": "https://avatars.example/octocat"},
        "head_commit": {
            "id": sha,
            "message": "Fix flaky login test",
            "url": f"{repo_url}/commit/{sha}",
            "author": {"name": "Octo Cat", "email": "octo@example.com"},
        },
    }


def github_workflow_run(
    status: str = "in_progress",
    conclusion=None,
    sha: str = SHA,
    run_id: int = 9001,
    run_attempt: int = 1,
    started: str = "2024-05-01T10:00:00Z",
    updated: str = "2024-05-01T10:00:00Z",
) -> dict:
    return {
        "action": "completed" if status == "completed" else "in_progress",
        "repository": {"full_name": "acme/api", "html_url": REPO_URL},
        "workflow_run": {
            "id": run_id,
            "name": "CI",
            "status": status,
            "conclusion": conclusion,
            "head_sha": sha,
            "head_branch": "main",
            "html_url": f"{REPO_URL}/actions/runs/{run_id}",
            "run_attempt": run_attempt,
            "run_started_at": started,
            "created_at": started,
            "updated_at": updated,
            "head_commit": {
                "message": "Fix flaky login test",
                "author": {"name": "Octo Cat", "email": "octo@example.com"},
            },
        },
    }


def github_check_run(conclusion: str = "failure", sha: str = SHA) -> dict:
    return {
        "action": "completed",
        "repository": {"full_name": "acme/api", "html_url": REPO_URL},
        "check_run": {
            "head_sha": sha,
            "status": "completed",
            "conclusion": conclusion,
            "completed_at": "2024-05-01T10:05:00Z",
            "html_url": f"{REPO_URL}/runs/1",
        },
    }


def gitlab_pipeline(status: str = "success", ref: str = "main", sha: str = SHA) -> dict:
    return {
        "object_kind": "pipeline",
        "object_attributes": {
            "id": 31,
            "ref": ref,
            "tag": False,
            "sha": sha,
            "status": status,
            "created_at": "2024-05-01 10:00:00 UTC",
            "finished_at": "2024-05-01 10:02:05 UTC" if status in ("success", "failed") else None,
            "duration": 125,
        },
        "project": {"web_url": "https://gitlab.com/acme/api"},
        "commit": {
            "id": sha,
            "message": "Bump dependencies",
            "url": f"https://gitlab.com/acme/api/-/commit/{sha}",
            "author": {"name": "Jane Dev", "email": "jane@example.com"},
        },
    }


def jenkins_build(phase: str = "COMPLETED", status: str = "SUCCESS", number: int = 12) -> dict:
    return {
        "name": "acme-api",
        "url": "job/acme-api/",
        "build": {
            "full_url": f"https://ci.example.com/job/acme-api/{number}/",
            "number": number,
            "phase": phase,
            "status": status,
            "timestamp": 1714557600000,  # 2024-05-01T10:00:00Z
            "duration": 125000,
            "scm": {"commit": SHA, "branch": "origin/main"},
        },
    }


def circleci_workflow(status: str = "success", branch: str = "main") -> dict:
    return {
        "type": "workflow-completed",
        "id": "3888f21b-eaa7-38e3-8f3d-75a63bba8895",
        "happened_at": "2024-05-01T10:02:05.000Z",
        "workflow": {
            "id": "fda08377-fe7e-46b1-8992-3a7aaecac9c3",
            "name": "build-test-deploy",
            "created_at": "2024-05-01T10:00:00.000Z",
            "stopped_at": "2024-05-01T10:02:05.000Z",
            "url": "https://app.circleci.com/pipelines/github/acme/api/130/workflows/fda08377",
            "status": status,
        },
        "pipeline": {
            "id": "1285fe1d-d3a6-44fc-8886-8979558254c4",
            "number": 130,
            "vcs": {
                "revision": SHA,
                "branch": branch,
                "commit": {
                    "subject": "Add retry to uploader",
                    "author": {"name": "Sam Ops", "email": "sam@example.com"},
                },
            },
        },
    }
