"""Link GitHub pull requests and commits to internal issues.

Branch names such as ``PROJ-123-feature`` identify the issue a pull request
works on. Commit messages can close issues with GitHub style keywords
("Fixes PROJ-123", "closes #42").
"""

from typing import Dict, Any, List, Optional
import logging
import re

from codehost_sync.models import (
    ExternalData,
    ExternalType,
    GitHubCommit,
    GitHubPullRequest,
    Issue,
    IssueClosedByCommitEvent,
    IssueStatus,
    MagicWordMatch,
    utcnow,
)
from codehost_sync.services.event_bus import EventBus, ISSUE_CLOSED_BY_COMMIT
from codehost_sync.services.external_data_service import ExternalDataService
from codehost_sync.services.issue_store import IssueStore

logger = logging.getLogger(__name__)

_CLOSE_WORDS = r"(?:fix(?:es|ed)?|close[sd]?|resolve[sd]?)"

CLOSE_KEY_PATTERN = re.compile(rf"\b{_CLOSE_WORDS}\s+([A-Z]+-\d+)\b", re.IGNORECASE)
CLOSE_NUMBER_PATTERN = re.compile(rf"\b{_CLOSE_WORDS}\s+#(\d+)\b", re.IGNORECASE)
ISSUE_KEY_PATTERN = re.compile(r"\b([A-Z]+-\d+)\b", re.IGNORECASE)

# Checked in order; the first match wins
BRANCH_PATTERNS = [
    re.compile(r"^([A-Z]+-\d+)", re.IGNORECASE),  # PROJ-123 at start
    re.compile(r"/([A-Z]+-\d+)", re.IGNORECASE),  # feat/PROJ-123
    re.compile(r"([A-Z]+-\d+)-", re.IGNORECASE),  # PROJ-123-feature
    re.compile(r"([A-Z]+-\d+)_", re.IGNORECASE),  # PROJ-123_feature
]


class IssueLinkService:
    """Derives issue references from branches and commit messages and acts on them."""

    def __init__(
        self,
        issue_store: IssueStore,
        external_data_service: ExternalDataService,
        event_bus: EventBus,
    ):
        self.issue_store = issue_store
        self.external_data_service = external_data_service
        self.event_bus = event_bus

    def parse_issue_key_from_branch(self, branch_name: str) -> Optional[str]:
        for pattern in BRANCH_PATTERNS:
            match = pattern.search(branch_name)
            if match:
                return match.group(1).upper()
        return None

    def parse_issue_keys_from_commit_message(self, message: str) -> List[str]:
        """Every ``PROJ-123`` mention, ignoring verbs and bare ``#123`` numbers."""
        keys: List[str] = []
        for match in ISSUE_KEY_PATTERN.finditer(message):
            key = match.group(1).upper()
            if key not in keys:
                keys.append(key)
        return keys

    def parse_magic_words_from_commit(self, message: str) -> List[MagicWordMatch]:
        """Find close and reference actions in a commit message.

        "Fixes PROJ-1" and "closes #2" are close actions; any other
        ``PROJ-123`` mention is a reference. Each key appears once, with the
        action of the first pattern that matched it.
        """
        results: List[MagicWordMatch] = []
        seen = set()

        def add(action: str, issue_key: str, raw_match: str) -> None:
            if issue_key not in seen:
                seen.add(issue_key)
                results.append(MagicWordMatch(action=action, issue_key=issue_key, raw_match=raw_match))

        for match in CLOSE_KEY_PATTERN.finditer(message):
            add("close", match.group(1).upper(), match.group(0))

        for match in CLOSE_NUMBER_PATTERN.finditer(message):
            add("close", f"#{match.group(1)}", match.group(0))

        for match in ISSUE_KEY_PATTERN.finditer(message):
            add("reference", match.group(1).upper(), match.group(0))

        return results

    async def find_issue_by_key(self, issue_key: str) -> Optional[Issue]:
        """Look up ``PROJ-123``; keys without a numeric suffix find nothing."""
        project_key, dash, number = issue_key.rpartition("-")
        if not dash or not project_key or not number.isdigit():
            return None
        return await self.issue_store.find_by_number(project_key, int(number))

    async def handle_commit_magic_words(
        self,
        integration_id: str,
        commit: GitHubCommit,
        project_key: Optional[str],
        committer_name: str,
    ) -> List[str]:
        """Close the issues a commit's close keywords point at.

        ``project_key`` is the project mapped to the commit's repository. When
        the repository has no mapping it is None and bare ``#123`` references
        are ignored, so a commit in an unrelated repository cannot close
        issues by number. ``PROJ-123`` keys name their project and always
        resolve. Returns the keys of the issues that were closed.
        """
        closed_keys: List[str] = []

        for magic_word in self.parse_magic_words_from_commit(commit.commit.message):
            if magic_word.action != "close":
                continue

            resolved_key = magic_word.issue_key
            if resolved_key.startswith("#"):
                if not project_key:
                    logger.warning(
                        f'SECURITY: Ignoring "{magic_word.raw_match}" in commit {commit.short_sha} - '
                        f"repository has no project mapping. Only PROJ-123 style references "
                        f"are allowed for unmapped repositories."
                    )
                    continue
                resolved_key = f"{project_key}-{resolved_key[1:]}"

            issue = await self.find_issue_by_key(resolved_key)
            if issue is None:
                logger.warning(
                    f'Magic word found "{magic_word.raw_match}" but issue {resolved_key} not found'
                )
                continue

            if issue.is_done:
                logger.debug(f"Issue {resolved_key} already done, skipping")
                continue

            issue.status = IssueStatus.DONE
            await self.issue_store.save(issue)

            await self.external_data_service.upsert(
                integration_id,
                ExternalType.MAGIC_WORD_CLOSE,
                f"{commit.sha}-{resolved_key}",
                raw_data={
                    "commit_sha": commit.sha,
                    "commit_message": commit.headline,
                    "commit_url": commit.html_url,
                    "committer_name": committer_name,
                    "issue_id": issue.id,
                    "issue_key": resolved_key,
                    "magic_word": magic_word.raw_match,
                    "closed_at": utcnow().isoformat(),
                },
            )

            event = IssueClosedByCommitEvent(
                issue_id=issue.id,
                issue_key=resolved_key,
                commit_sha=commit.short_sha,
                commit_url=commit.html_url,
                committer_name=committer_name,
            )
            self.event_bus.emit(ISSUE_CLOSED_BY_COMMIT, event.model_dump())

            closed_keys.append(resolved_key)
            logger.info(
                f'Issue {resolved_key} closed via magic word "{magic_word.raw_match}" '
                f"in commit {commit.short_sha}"
            )

        return closed_keys

    async def link_pr_to_issue(
        self,
        integration_id: str,
        pr: GitHubPullRequest,
        repository: str,
    ) -> Optional[Dict[str, Any]]:
        """Record which issue a pull request's branch refers to. The issue is not changed."""
        issue_key = self.parse_issue_key_from_branch(pr.head.ref)
        if not issue_key:
            return None

        issue = await self.find_issue_by_key(issue_key)
        if issue is None:
            logger.warning(f"Issue {issue_key} not found for PR #{pr.number}")
            return {"issue_key": issue_key, "linked": False}

        await self.external_data_service.upsert(
            integration_id,
            ExternalType.PR_ISSUE_LINK,
            f"{pr.id}-{issue_key}",
            raw_data={
                "pr_number": pr.number,
                "pr_title": pr.title,
                "pr_url": pr.html_url or f"https://github.com/{repository}/pull/{pr.number}",
                "pr_state": pr.state,
                "issue_id": issue.id,
                "issue_key": issue_key,
                "project_key": issue.project.key,
                "organization_id": issue.project.organization_id,
                "linked_at": utcnow().isoformat(),
            },
        )

        logger.info(f"Linked PR #{pr.number} to issue {issue_key}")
        return {"issue_key": issue_key, "linked": True}

    async def link_commit_to_issues(self, integration_id: str, commit: GitHubCommit) -> List[str]:
        linked_keys: List[str] = []

        for issue_key in self.parse_issue_keys_from_commit_message(commit.commit.message):
            issue = await self.find_issue_by_key(issue_key)
            if issue is None:
                continue

            await self.external_data_service.upsert(
                integration_id,
                ExternalType.COMMIT_ISSUE_LINK,
                f"{commit.sha}-{issue_key}",
                raw_data={
                    "commit_sha": commit.sha,
                    "commit_message": commit.headline,
                    "commit_url": commit.html_url,
                    "commit_author": commit.commit.author.name,
                    "issue_id": issue.id,
                    "issue_key": issue_key,
                    "linked_at": utcnow().isoformat(),
                },
            )
            linked_keys.append(issue_key)

        if linked_keys:
            logger.info(f"Linked commit {commit.short_sha} to issues: {', '.join(linked_keys)}")

        return linked_keys

    async def handle_pr_merged(
        self,
        integration_id: str,
        pr: GitHubPullRequest,
        repository: str,
    ) -> bool:
        """Mark the branch's issue done. Returns False when nothing changed."""
        issue_key = self.parse_issue_key_from_branch(pr.head.ref)
        if not issue_key:
            return False

        issue = await self.find_issue_by_key(issue_key)
        if issue is None:
            return False

        if issue.is_done:
            logger.debug(f"Issue {issue_key} already done, ignoring merge of PR #{pr.number}")
            return False

        issue.status = IssueStatus.DONE
        await self.issue_store.save(issue)

        await self.external_data_service.upsert(
            integration_id,
            ExternalType.PR_MERGED,
            f"merged-{pr.id}",
            raw_data={
                "pr_number": pr.number,
                "pr_title": pr.title,
                "pr_url": pr.html_url or f"https://github.com/{repository}/pull/{pr.number}",
                "merged_by": pr.merged_by.login if pr.merged_by else "unknown",
                "merged_at": (pr.merged_at or utcnow()).isoformat(),
                "issue_id": issue.id,
                "issue_key": issue_key,
            },
        )

        logger.info(f"Issue {issue_key} marked as DONE due to PR #{pr.number} merge")
        return True

    async def get_links_for_issue(self, issue_id: str) -> Dict[str, List[ExternalData]]:
        return await self.external_data_service.get_links_for_issue(issue_id)
