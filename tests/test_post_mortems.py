"""
Tests for the Post-Mortem Workflow - Verifying Publish Guarantees.

These tests verify:
1. CREATE: One post-mortem per incident, five whys validated at write time
2. UPDATE: Drafts change, published records are frozen
3. PUBLISH: One-way; a second publish is a conflict
4. AI: The suggestion is stored and replaces the draft's root cause
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from incident_ledger.core.errors import (
    AuthorizationDenied,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from incident_ledger.models import PostMortem, PostMortemStatus, User
from incident_ledger.schemas import FiveWhys
from incident_ledger.services import (
    AIAnalyzerService,
    CreateIncidentInput,
    CreatePostMortemInput,
    IncidentEngine,
    PostMortemWorkflow,
    UpdatePostMortemInput,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
async def incident(session: AsyncSession, editor: User):
    return await IncidentEngine(session).create_incident(
        CreateIncidentInput(
            title="Payments API returning 502",
            description="Gateway errors for all card payments",
            severity="critical",
            status="resolved",
        ),
        editor,
    )


@pytest.fixture
async def draft(session: AsyncSession, incident, editor: User) -> PostMortem:
    return await PostMortemWorkflow(session).create_post_mortem(
        CreatePostMortemInput(
            incident_id=incident.id,
            root_cause="Expired TLS certificate on the gateway",
            impact_analysis="All card payments failed for 40 minutes",
        ),
        editor,
    )


def snapshot(post_mortem: PostMortem) -> dict:
    return {
        column.key: getattr(post_mortem, column.key)
        for column in PostMortem.__table__.columns
        if column.key != "updated_at"
    }


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreatePostMortem:
    async def test_create_starts_as_draft(self, draft: PostMortem, editor: User, incident):
        assert draft.status == PostMortemStatus.DRAFT
        assert draft.author_id == editor.id
        assert draft.incident_id == incident.id
        assert draft.published_at is None
        assert draft.five_whys is None

    async def test_one_per_incident(self, session: AsyncSession, draft: PostMortem, incident, admin: User):
        with pytest.raises(ConflictError):
            await PostMortemWorkflow(session).create_post_mortem(
                CreatePostMortemInput(incident_id=incident.id), admin
            )

    async def test_unknown_incident(self, session: AsyncSession, admin: User):
        with pytest.raises(NotFoundError):
            await PostMortemWorkflow(session).create_post_mortem(
                CreatePostMortemInput(incident_id=uuid4()), admin
            )

    async def test_viewer_cannot_create(self, session: AsyncSession, incident, viewer: User):
        with pytest.raises(AuthorizationDenied):
            await PostMortemWorkflow(session).create_post_mortem(
                CreatePostMortemInput(incident_id=incident.id), viewer
            )

        count = (await session.execute(select(func.count()).select_from(PostMortem))).scalar_one()
        assert count == 0

    async def test_five_whys_is_normalized(self, session: AsyncSession, incident, editor: User):
        post_mortem = await PostMortemWorkflow(session).create_post_mortem(
            CreatePostMortemInput(incident_id=incident.id, five_whys={"why1": "Cert expired"}),
            editor,
        )

        assert post_mortem.five_whys == {
            "why1": "Cert expired",
            "why2": "",
            "why3": "",
            "why4": "",
            "why5": "",
        }

    @pytest.mark.parametrize(
        "five_whys",
        [
            {"why6": "one too many"},
            {"why1": ["not", "a", "string"]},
            "why1=because",
        ],
    )
    async def test_malformed_five_whys_is_rejected(self, session: AsyncSession, incident, editor: User, five_whys):
        with pytest.raises(ValidationError) as exc_info:
            await PostMortemWorkflow(session).create_post_mortem(
                CreatePostMortemInput(incident_id=incident.id, five_whys=five_whys),
                editor,
            )
        assert exc_info.value.field == "five_whys"


# =============================================================================
# TEST: UPDATE AND PUBLISH
# =============================================================================


class TestUpdatePostMortem:
    async def test_partial_update(self, session: AsyncSession, draft: PostMortem, editor: User):
        workflow = PostMortemWorkflow(session)

        await workflow.update_post_mortem(
            draft.id,
            UpdatePostMortemInput(lessons_learned="Alert on cert expiry", five_whys=FiveWhys(why1="No alert")),
            editor,
        )

        assert draft.lessons_learned == "Alert on cert expiry"
        assert draft.root_cause == "Expired TLS certificate on the gateway"
        assert draft.five_whys["why1"] == "No alert"

    async def test_other_editor_cannot_update(
        self, session: AsyncSession, draft: PostMortem, other_editor: User
    ):
        with pytest.raises(AuthorizationDenied):
            await PostMortemWorkflow(session).update_post_mortem(
                draft.id, UpdatePostMortemInput(root_cause="hijacked"), other_editor
            )
        assert draft.root_cause == "Expired TLS certificate on the gateway"

    async def test_published_record_is_frozen(self, session: AsyncSession, draft: PostMortem, admin: User):
        """Admin publishes; a later update is rejected and nothing changes."""
        workflow = PostMortemWorkflow(session)
        await workflow.publish(draft.id, admin)
        assert draft.status == PostMortemStatus.PUBLISHED
        assert draft.published_at is not None
        before = snapshot(draft)

        with pytest.raises(ConflictError):
            await workflow.update_post_mortem(
                draft.id,
                UpdatePostMortemInput(root_cause="Rewritten", five_whys={"why1": "changed"}),
                admin,
            )

        assert snapshot(draft) == before

    async def test_publish_twice_is_a_conflict(self, session: AsyncSession, draft: PostMortem, editor: User):
        workflow = PostMortemWorkflow(session)
        await workflow.publish(draft.id, editor)
        published_at = draft.published_at

        with pytest.raises(ConflictError):
            await workflow.publish(draft.id, editor)

        assert draft.published_at == published_at
        assert draft.status == PostMortemStatus.PUBLISHED

    async def test_listing_by_status(self, session: AsyncSession, draft: PostMortem, viewer: User):
        workflow = PostMortemWorkflow(session)

        drafts, total = await workflow.list_post_mortems(viewer, status="draft")
        assert total == 1 and drafts[0].id == draft.id

        published, total = await workflow.list_post_mortems(viewer, status="published")
        assert total == 0


# =============================================================================
# TEST: AI SUGGESTION
# =============================================================================


class TestAISuggestion:
    async def test_suggestion_replaces_root_cause(
        self, session: AsyncSession, draft: PostMortem, editor: User, make_analyzer
    ):
        suggestion = "1. Certificate rotation job failed silently\n2. No expiry monitoring"
        workflow = PostMortemWorkflow(session, analyzer=make_analyzer(suggestion))

        await workflow.generate_ai_suggestion(draft.id, editor)

        assert draft.ai_root_cause_suggestion == suggestion
        assert draft.root_cause == suggestion

    async def test_ai_failure_writes_nothing(
        self, session: AsyncSession, draft: PostMortem, editor: User, make_analyzer
    ):
        workflow = PostMortemWorkflow(session, analyzer=make_analyzer(status_code=503))

        with pytest.raises(ExternalServiceError):
            await workflow.generate_ai_suggestion(draft.id, editor)

        assert draft.ai_root_cause_suggestion is None
        assert draft.root_cause == "Expired TLS certificate on the gateway"

    async def test_not_on_published(
        self, session: AsyncSession, draft: PostMortem, editor: User, make_analyzer
    ):
        workflow = PostMortemWorkflow(session, analyzer=make_analyzer())
        await workflow.publish(draft.id, editor)

        with pytest.raises(ConflictError):
            await workflow.generate_ai_suggestion(draft.id, editor)

    async def test_unconfigured_analyzer(self, session: AsyncSession, draft: PostMortem, editor: User):
        workflow = PostMortemWorkflow(session, analyzer=AIAnalyzerService(api_key=""))

        with pytest.raises(ExternalServiceError):
            await workflow.generate_ai_suggestion(draft.id, editor)


class TestDeletePostMortem:
    async def test_admin_only(self, session: AsyncSession, draft: PostMortem, editor: User, admin: User):
        workflow = PostMortemWorkflow(session)

        with pytest.raises(AuthorizationDenied):
            await workflow.delete_post_mortem(draft.id, editor)

        await workflow.delete_post_mortem(draft.id, admin)
        with pytest.raises(NotFoundError):
            await workflow.get_post_mortem(draft.id, admin)
