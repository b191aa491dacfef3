"""Normalize CI provider environments into one :class:`BuildMetadata` record.

Each supported provider contributes a :class:`Detector`: a predicate over an
immutable snapshot of the environment plus an extractor that returns a partial
field mapping. :func:`resolve` folds, in order:

1. defaults read from git,
2. every matching detector, in :data:`DETECTORS` order (a later match
   overwrites an earlier one field by field),
3. config-file fallbacks, which only fill fields that are still empty,
4. explicit overrides, which always win, even when they are empty.

Resolution never fails. Anything that cannot be determined is ``""``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from covship._meta import logger
from covship.core.git import GitContext, parse_remote_url
from covship.core.metadata import BuildMetadata

Environment = Mapping[str, str]
Partial = dict[str, object]
Extractor = Callable[[Environment], Partial]

_NO_PULL_REQUEST = frozenset({"false", "null", "none"})


@dataclass(frozen=True, slots=True)
class Detector:
    """One CI provider's environment signature and field mapping."""

    name: str
    matches: Callable[[Environment], bool]
    extract: Extractor


DETECTORS: list[Detector] = []


def detector(name: str, matches: Callable[[Environment], bool]) -> Callable[[Extractor], Extractor]:
    """Register the decorated extractor as the detector for *name*."""

    def register(extract: Extractor) -> Extractor:
        DETECTORS.append(Detector(name=name, matches=matches, extract=extract))
        return extract

    return register


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #


def _get(env: Environment, *names: str) -> str:
    """Return the first non-empty value among *names*."""
    for name in names:
        value = env.get(name, "")
        if value:
            return value
    return ""


def _is(env: Environment, name: str, *values: str) -> bool:
    return env.get(name) in values


def _ci(env: Environment) -> bool:
    return _is(env, "CI", "true", "True")


def _joined(sep: str, *values: str) -> str:
    """Join *values* with *sep*, or ``""`` unless every part is present."""
    return sep.join(values) if all(values) else ""


def _strip_ref(ref: str) -> str:
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix) :]
    return ref


def _with_remote(url: str, **values: str) -> Partial:
    """Host and slug parsed from *url*, overlaid with non-empty *values*."""
    host, slug = parse_remote_url(url)
    out: Partial = {"repo_host": host, "slug": slug}
    out.update({k: v for k, v in values.items() if v})
    return out


# --------------------------------------------------------------------------- #
# Providers                                                                   #
# --------------------------------------------------------------------------- #


@detector("jenkins", lambda env: bool(env.get("JENKINS_URL")))
def _jenkins(env: Environment) -> Partial:
    return _with_remote(
        _get(env, "GIT_URL"),
        service_name="jenkins",
        branch=_get(env, "ghprbSourceBranch", "GIT_BRANCH", "BRANCH_NAME"),
        commit=_get(env, "ghprbActualCommit", "GIT_COMMIT"),
        pull_request_id=_get(env, "ghprbPullId", "CHANGE_ID"),
        build_id=_get(env, "BUILD_NUMBER"),
        build_url=_get(env, "BUILD_URL"),
        git_root=_get(env, "WORKSPACE"),
    )


@detector(
    "travis",
    lambda env: _ci(env) and _is(env, "TRAVIS", "true") and not _is(env, "SHIPPABLE", "true"),
)
def _travis(env: Environment) -> Partial:
    return {
        "service_name": "travis",
        "branch": _get(env, "TRAVIS_PULL_REQUEST_BRANCH", "TRAVIS_BRANCH"),
        "service_job_id": _get(env, "TRAVIS_JOB_ID"),
        "build_id": _get(env, "TRAVIS_JOB_NUMBER"),
        "build_url": _get(env, "TRAVIS_JOB_WEB_URL"),
        "pull_request_id": _get(env, "TRAVIS_PULL_REQUEST"),
        "tag": _get(env, "TRAVIS_TAG"),
        "slug": _get(env, "TRAVIS_REPO_SLUG"),
        "commit": _get(env, "TRAVIS_PULL_REQUEST_SHA", "TRAVIS_COMMIT"),
        "git_root": _get(env, "TRAVIS_BUILD_DIR"),
    }


@detector("codeship", lambda env: _ci(env) and _is(env, "CI_NAME", "codeship"))
def _codeship(env: Environment) -> Partial:
    return {
        "service_name": "codeship",
        "branch": _get(env, "CI_BRANCH"),
        "build_id": _get(env, "CI_BUILD_NUMBER"),
        "build_url": _get(env, "CI_BUILD_URL"),
        "commit": _get(env, "CI_COMMIT_ID"),
    }


@detector("buildkite", lambda env: _ci(env) and _is(env, "BUILDKITE", "true"))
def _buildkite(env: Environment) -> Partial:
    pr = _get(env, "BUILDKITE_PULL_REQUEST")
    return _with_remote(
        _get(env, "BUILDKITE_REPO"),
        service_name="buildkite",
        branch=_get(env, "BUILDKITE_BRANCH"),
        build_id=_get(env, "BUILDKITE_BUILD_NUMBER"),
        service_job_id=_get(env, "BUILDKITE_JOB_ID"),
        build_url=_get(env, "BUILDKITE_BUILD_URL"),
        pull_request_id=pr,
        tag=_get(env, "BUILDKITE_TAG"),
        commit=_get(env, "BUILDKITE_COMMIT"),
    )


@detector("circleci", lambda env: _ci(env) and _is(env, "CIRCLECI", "true"))
def _circleci(env: Environment) -> Partial:
    build = _get(env, "CIRCLE_BUILD_NUM")
    pr = _get(env, "CIRCLE_PR_NUMBER") or _get(env, "CIRCLE_PULL_REQUEST").rsplit("/", 1)[-1]
    return _with_remote(
        _get(env, "CIRCLE_REPOSITORY_URL"),
        service_name="circleci",
        branch=_get(env, "CIRCLE_BRANCH"),
        build_id=build,
        service_job_id=_joined(".", build, _get(env, "CIRCLE_NODE_INDEX")),
        build_url=_get(env, "CIRCLE_BUILD_URL"),
        pull_request_id=pr,
        tag=_get(env, "CIRCLE_TAG"),
        slug=_joined("/", _get(env, "CIRCLE_PROJECT_USERNAME"), _get(env, "CIRCLE_PROJECT_REPONAME")),
        commit=_get(env, "CIRCLE_SHA1"),
    )


@detector("semaphore", lambda env: _ci(env) and _is(env, "SEMAPHORE", "true"))
def _semaphore(env: Environment) -> Partial:
    return _with_remote(
        _get(env, "SEMAPHORE_GIT_URL"),
        service_name="semaphore",
        branch=_get(env, "SEMAPHORE_GIT_PR_BRANCH", "SEMAPHORE_GIT_BRANCH", "BRANCH_NAME"),
        build_id=_get(env, "SEMAPHORE_WORKFLOW_ID", "SEMAPHORE_BUILD_NUMBER"),
        service_job_id=_get(env, "SEMAPHORE_JOB_ID", "SEMAPHORE_CURRENT_THREAD"),
        pull_request_id=_get(env, "SEMAPHORE_GIT_PR_NUMBER"),
        slug=_get(env, "SEMAPHORE_GIT_REPO_SLUG", "SEMAPHORE_REPO_SLUG"),
        tag=_get(env, "SEMAPHORE_GIT_TAG_NAME"),
        commit=_get(env, "SEMAPHORE_GIT_SHA", "REVISION"),
    )


@detector("greenhouse", lambda env: _is(env, "GREENHOUSE", "true"))
def _greenhouse(env: Environment) -> Partial:
    return {
        "service_name": "greenhouse",
        "branch": _get(env, "GREENHOUSE_BRANCH"),
        "build_id": _get(env, "GREENHOUSE_BUILD_NUMBER"),
        "build_url": _get(env, "GREENHOUSE_BUILD_URL"),
        "pull_request_id": _get(env, "GREENHOUSE_PULL_REQUEST"),
        "commit": _get(env, "GREENHOUSE_COMMIT"),
    }


@detector("drone.io", lambda env: _ci(env) and _is(env, "DRONE", "true"))
def _drone(env: Environment) -> Partial:
    return _with_remote(
        _get(env, "DRONE_GIT_HTTP_URL", "DRONE_REMOTE_URL"),
        service_name="drone.io",
        branch=_get(env, "DRONE_SOURCE_BRANCH", "DRONE_BRANCH"),
        build_id=_get(env, "DRONE_BUILD_NUMBER"),
        build_url=_get(env, "DRONE_BUILD_LINK", "DRONE_BUILD_URL"),
        pull_request_id=_get(env, "DRONE_PULL_REQUEST"),
        tag=_get(env, "DRONE_TAG"),
        slug=_get(env, "DRONE_REPO"),
        commit=_get(env, "DRONE_COMMIT_SHA", "DRONE_COMMIT"),
        git_root=_get(env, "DRONE_WORKSPACE", "DRONE_BUILD_DIR"),
    )


@detector("teamcity", lambda env: bool(env.get("TEAMCITY_VERSION")))
def _teamcity(env: Environment) -> Partial:
    return {
        "service_name": "teamcity",
        "branch": _strip_ref(_get(env, "TEAMCITY_BUILD_BRANCH")),
        "build_id": _get(env, "BUILD_NUMBER"),
        "build_url": _get(env, "BUILD_URL"),
        "commit": _get(env, "BUILD_VCS_NUMBER"),
    }


@detector("appveyor", lambda env: _ci(env) and _is(env, "APPVEYOR", "True", "true"))
def _appveyor(env: Environment) -> Partial:
    account = _get(env, "APPVEYOR_ACCOUNT_NAME")
    project = _get(env, "APPVEYOR_PROJECT_SLUG")
    job = _get(env, "APPVEYOR_JOB_ID")
    build_url = ""
    if all((account, project, job)):
        base = _get(env, "APPVEYOR_URL") or "https://ci.appveyor.com"
        build_url = f"{base}/project/{account}/{project}/builds/{_get(env, 'APPVEYOR_BUILD_ID')}/job/{job}"
    return {
        "service_name": "appveyor",
        "branch": _get(env, "APPVEYOR_PULL_REQUEST_HEAD_REPO_BRANCH", "APPVEYOR_REPO_BRANCH"),
        "service_job_id": _joined("/", account, project, _get(env, "APPVEYOR_BUILD_VERSION")),
        "build_id": job,
        "build_url": build_url,
        "pull_request_id": _get(env, "APPVEYOR_PULL_REQUEST_NUMBER"),
        "slug": _get(env, "APPVEYOR_REPO_NAME"),
        "tag": _get(env, "APPVEYOR_REPO_TAG_NAME"),
        "commit": _get(env, "APPVEYOR_PULL_REQUEST_HEAD_COMMIT", "APPVEYOR_REPO_COMMIT"),
        "git_root": _get(env, "APPVEYOR_BUILD_FOLDER"),
    }


@detector("wercker", lambda env: _ci(env) and bool(env.get("WERCKER_GIT_BRANCH")))
def _wercker(env: Environment) -> Partial:
    return {
        "service_name": "wercker",
        "branch": _get(env, "WERCKER_GIT_BRANCH"),
        "build_id": _get(env, "WERCKER_MAIN_PIPELINE_STARTED"),
        "build_url": _get(env, "WERCKER_BUILD_URL"),
        "slug": _joined("/", _get(env, "WERCKER_GIT_OWNER"), _get(env, "WERCKER_GIT_REPOSITORY")),
        "commit": _get(env, "WERCKER_GIT_COMMIT"),
    }


@detector("snap", lambda env: _ci(env) and _is(env, "SNAP_CI", "true"))
def _snap(env: Environment) -> Partial:
    return {
        "service_name": "snap",
        "branch": _get(env, "SNAP_BRANCH", "SNAP_UPSTREAM_BRANCH"),
        "service_job_id": _get(env, "SNAP_STAGE_NAME"),
        "build_id": _get(env, "SNAP_PIPELINE_COUNTER"),
        "pull_request_id": _get(env, "SNAP_PULL_REQUEST_NUMBER"),
        "commit": _get(env, "SNAP_COMMIT", "SNAP_UPSTREAM_COMMIT"),
    }


@detector("magnum", lambda env: _ci(env) and _is(env, "MAGNUM", "true"))
def _magnum(env: Environment) -> Partial:
    return {
        "service_name": "magnum",
        "branch": _get(env, "CI_BRANCH"),
        "build_id": _get(env, "CI_BUILD_NUMBER"),
        "commit": _get(env, "CI_COMMIT"),
    }


@detector("shippable", lambda env: _is(env, "SHIPPABLE", "true"))
def _shippable(env: Environment) -> Partial:
    return {
        "service_name": "shippable",
        "branch": _get(env, "HEAD_BRANCH", "BRANCH"),
        "service_job_id": _get(env, "JOB_NUMBER"),
        "build_id": _get(env, "BUILD_NUMBER"),
        "build_url": _get(env, "BUILD_URL"),
        "pull_request_id": _get(env, "PULL_REQUEST"),
        "slug": _get(env, "REPO_FULL_NAME", "REPO_NAME"),
        "commit": _get(env, "COMMIT"),
    }


@detector(
    "gitlab",
    lambda env: env.get("CI_SERVER_NAME", "").startswith("GitLab") or _is(env, "GITLAB_CI", "true"),
)
def _gitlab(env: Environment) -> Partial:
    return _with_remote(
        _get(env, "CI_REPOSITORY_URL", "CI_BUILD_REPO"),
        service_name="gitlab",
        branch=_get(env, "CI_MERGE_REQUEST_SOURCE_BRANCH_NAME", "CI_COMMIT_REF_NAME", "CI_BUILD_REF_NAME"),
        build_id=_get(env, "CI_PIPELINE_ID", "CI_BUILD_ID"),
        service_job_id=_get(env, "CI_JOB_ID"),
        build_url=_get(env, "CI_JOB_URL", "CI_PIPELINE_URL"),
        pull_request_id=_get(env, "CI_MERGE_REQUEST_IID"),
        tag=_get(env, "CI_COMMIT_TAG"),
        slug=_get(env, "CI_PROJECT_PATH"),
        commit=_get(env, "CI_COMMIT_SHA", "CI_BUILD_REF"),
        git_root=_get(env, "CI_PROJECT_DIR"),
    )


@detector("bitbucket", lambda env: _ci(env) and bool(env.get("BITBUCKET_BUILD_NUMBER")))
def _bitbucket(env: Environment) -> Partial:
    return _with_remote(
        _get(env, "BITBUCKET_GIT_HTTP_ORIGIN"),
        service_name="bitbucket",
        branch=_get(env, "BITBUCKET_BRANCH"),
        build_id=_get(env, "BITBUCKET_BUILD_NUMBER"),
        service_job_id=_get(env, "BITBUCKET_STEP_UUID"),
        pull_request_id=_get(env, "BITBUCKET_PR_ID"),
        tag=_get(env, "BITBUCKET_TAG"),
        slug=_get(env, "BITBUCKET_REPO_FULL_NAME"),
        commit=_get(env, "BITBUCKET_COMMIT"),
        git_root=_get(env, "BITBUCKET_CLONE_DIR"),
    )


@detector("bitrise", lambda env: _ci(env) and _is(env, "BITRISE_IO", "true"))
def _bitrise(env: Environment) -> Partial:
    return _with_remote(
        _get(env, "GIT_REPOSITORY_URL"),
        service_name="bitrise",
        branch=_get(env, "BITRISE_GIT_BRANCH"),
        build_id=_get(env, "BITRISE_BUILD_NUMBER"),
        build_url=_get(env, "BITRISE_BUILD_URL"),
        pull_request_id=_get(env, "BITRISE_PULL_REQUEST"),
        tag=_get(env, "BITRISE_GIT_TAG"),
        commit=_get(env, "GIT_CLONE_COMMIT_HASH", "BITRISE_GIT_COMMIT"),
    )


@detector("azure_pipelines", lambda env: _is(env, "TF_BUILD", "True", "true"))
def _azure_pipelines(env: Environment) -> Partial:
    build = _get(env, "BUILD_BUILDID")
    server = _get(env, "SYSTEM_TEAMFOUNDATIONSERVERURI", "SYSTEM_TEAMFOUNDATIONCOLLECTIONURI")
    project = _get(env, "SYSTEM_TEAMPROJECT")
    build_url = f"{server}{project}/_build/results?buildId={build}" if (server and project and build) else ""
    return _with_remote(
        _get(env, "BUILD_REPOSITORY_URI"),
        service_name="azure_pipelines",
        branch=_strip_ref(_get(env, "SYSTEM_PULLREQUEST_SOURCEBRANCH", "BUILD_SOURCEBRANCH", "BUILD_SOURCEBRANCHNAME")),
        build_id=_get(env, "BUILD_BUILDNUMBER"),
        service_job_id=build,
        build_url=build_url,
        pull_request_id=_get(env, "SYSTEM_PULLREQUEST_PULLREQUESTNUMBER", "SYSTEM_PULLREQUEST_PULLREQUESTID"),
        slug=_get(env, "BUILD_REPOSITORY_NAME"),
        commit=_get(env, "BUILD_SOURCEVERSION"),
        git_root=_get(env, "BUILD_SOURCESDIRECTORY"),
    )


@detector("codebuild", lambda env: bool(env.get("CODEBUILD_BUILD_ARN")))
def _codebuild(env: Environment) -> Partial:
    source = _get(env, "CODEBUILD_SOURCE_VERSION")
    pr = source.removeprefix("pr/") if source.startswith("pr/") else ""
    return _with_remote(
        _get(env, "CODEBUILD_SOURCE_REPO_URL"),
        service_name="codebuild",
        branch=_strip_ref(_get(env, "CODEBUILD_WEBHOOK_HEAD_REF")),
        build_id=_get(env, "CODEBUILD_BUILD_ID"),
        build_url=_get(env, "CODEBUILD_BUILD_URL"),
        pull_request_id=pr,
        commit=_get(env, "CODEBUILD_RESOLVED_SOURCE_VERSION"),
        git_root=_get(env, "CODEBUILD_SRC_DIR"),
    )


@detector("heroku", lambda env: _ci(env) and bool(env.get("HEROKU_TEST_RUN_BRANCH")))
def _heroku(env: Environment) -> Partial:
    return {
        "service_name": "heroku",
        "branch": _get(env, "HEROKU_TEST_RUN_BRANCH"),
        "build_id": _get(env, "HEROKU_TEST_RUN_ID"),
        "commit": _get(env, "HEROKU_TEST_RUN_COMMIT_VERSION"),
    }


@detector("cirrus-ci", lambda env: _is(env, "CIRRUS_CI", "true"))
def _cirrus(env: Environment) -> Partial:
    task = _get(env, "CIRRUS_TASK_ID")
    return _with_remote(
        _get(env, "CIRRUS_REPO_CLONE_URL"),
        service_name="cirrus-ci",
        branch=_get(env, "CIRRUS_BRANCH"),
        build_id=_get(env, "CIRRUS_BUILD_ID"),
        service_job_id=task,
        build_url=f"https://cirrus-ci.com/task/{task}" if task else "",
        pull_request_id=_get(env, "CIRRUS_PR"),
        tag=_get(env, "CIRRUS_TAG"),
        slug=_get(env, "CIRRUS_REPO_FULL_NAME"),
        commit=_get(env, "CIRRUS_CHANGE_IN_REPO"),
        git_root=_get(env, "CIRRUS_WORKING_DIR"),
    )


@detector("github-actions", lambda env: _is(env, "GITHUB_ACTIONS", "true"))
def _github_actions(env: Environment) -> Partial:
    ref = _get(env, "GITHUB_REF")
    is_tag = _is(env, "GITHUB_REF_TYPE", "tag") or ref.startswith("refs/tags/")
    pr = ""
    if ref.startswith("refs/pull/"):
        pr = ref.split("/")[2]
    branch = _get(env, "GITHUB_HEAD_REF") or ("" if is_tag or pr else _strip_ref(ref))
    server = _get(env, "GITHUB_SERVER_URL") or "https://github.com"
    repo = _get(env, "GITHUB_REPOSITORY")
    run = _get(env, "GITHUB_RUN_ID")
    return _with_remote(
        f"{server}/{repo}" if repo else server,
        service_name="github-actions",
        branch=branch,
        tag=_get(env, "GITHUB_REF_NAME") if is_tag else "",
        build_id=run,
        service_job_id=_get(env, "GITHUB_JOB"),
        build_url=f"{server}/{repo}/actions/runs/{run}" if (repo and run) else "",
        pull_request_id=pr,
        slug=repo,
        commit=_get(env, "GITHUB_SHA"),
        git_root=_get(env, "GITHUB_WORKSPACE"),
    )


def _generic(env: Environment) -> Partial:
    return {
        "commit": _get(env, "VCS_COMMIT_ID"),
        "branch": _get(env, "VCS_BRANCH_NAME"),
        "tag": _get(env, "VCS_TAG"),
        "pull_request_id": _get(env, "VCS_PULL_REQUEST"),
        "slug": _get(env, "VCS_SLUG"),
        "build_url": _get(env, "CI_BUILD_URL"),
        "build_id": _get(env, "CI_BUILD_ID"),
    }


FALLBACK = Detector(name="generic", matches=lambda env: True, extract=_generic)


# --------------------------------------------------------------------------- #
# Resolution                                                                  #
# --------------------------------------------------------------------------- #


def snapshot(env: Mapping[str, str]) -> Environment:
    """Freeze *env* so detectors cannot observe later mutation."""
    return MappingProxyType(dict(env))


def matching_detectors(env: Environment, detectors: list[Detector] | None = None) -> list[Detector]:
    """Detectors whose predicate holds for *env*, in evaluation order."""
    candidates = DETECTORS if detectors is None else detectors
    matched = [d for d in candidates if d.matches(env)]
    return matched or [FALLBACK]


def git_defaults(git: GitContext, *, now: float | None = None) -> BuildMetadata:
    """The record before any CI detection: everything git can tell us."""
    host, slug = parse_remote_url(git.remote_url)
    return BuildMetadata(
        repo_host=host,
        slug=slug,
        git_root=git.root,
        git_remotes=git.remotes,
        commit=git.merged_head or git.commit,
        commit_timestamp=git.commit_timestamp,
        branch=git.branch,
        tag=git.tag,
        author_name=git.author_name,
        author_email=git.author_email,
        committer_name=git.committer_name,
        committer_email=git.committer_email,
        message=git.message,
        run_at_timestamp=str(int(time.time() if now is None else now)),
    )


def apply_partial(meta: BuildMetadata, partial: Partial) -> BuildMetadata:
    """Fold one detector's output; empty values never erase known ones."""
    changes = {k: v for k, v in partial.items() if v}
    return meta.updated(changes) if changes else meta


def fill_empty(meta: BuildMetadata, fallbacks: Mapping[str, object]) -> BuildMetadata:
    """Apply *fallbacks* only to fields that are still empty."""
    changes = {k: v for k, v in fallbacks.items() if v and meta.is_empty(k)}
    return meta.updated(changes) if changes else meta


def _normalize(meta: BuildMetadata) -> BuildMetadata:
    if meta.pull_request_id.strip().lower() in _NO_PULL_REQUEST:
        return meta.updated({"pull_request_id": ""})
    return meta


def resolve(
    env: Mapping[str, str],
    git: GitContext,
    overrides: Mapping[str, object] | None = None,
    *,
    fallbacks: Mapping[str, object] | None = None,
    detect: bool = True,
    now: float | None = None,
) -> BuildMetadata:
    """Produce the canonical :class:`BuildMetadata` for this run.

    *overrides* holds explicitly supplied fields (CLI flags); each key present
    replaces the detected value unconditionally. *fallbacks* holds config-file
    values that only fill fields detection left empty.
    """
    frozen = snapshot(env)
    meta = git_defaults(git, now=now)

    if detect:
        for det in matching_detectors(frozen):
            logger.debug("CI detector matched: %s", det.name)
            meta = apply_partial(meta, det.extract(frozen))
    else:
        logger.debug("CI detection disabled")

    meta = _normalize(meta)
    if fallbacks:
        meta = fill_empty(meta, fallbacks)
    if overrides:
        meta = meta.updated(overrides)
    return meta


__all__ = [
    "DETECTORS",
    "FALLBACK",
    "Detector",
    "apply_partial",
    "detector",
    "fill_empty",
    "git_defaults",
    "matching_detectors",
    "resolve",
    "snapshot",
]
