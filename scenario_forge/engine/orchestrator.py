"""Turn orchestrator: drives scenarios through bounded simulated conversations."""

import asyncio
import logging
import random
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from scenario_forge.exceptions import RunSetupError

from .backends.base import GenerationBackend, GenerationRequest, GenerationResult
from .backends.chat import create_backend
from .backends.simulated import SimulatedBackend
from .beats import BeatSequencer
from .events import Event, EventLevel, EventSeverity, EventSink, EventType, LoggingEventSink
from .export import save_conversation
from .linters import LintPolicy, run_all_linters
from .llm.base import GenerationConfig
from .memory import MemoryOptions, extract_short_memory
from .metrics import aggregate_run_metrics, compute_turn_metrics
from .models import (
    ConversationResult,
    RunOptions,
    RunResult,
    SafetyEscalation,
    ShortMemory,
    Speaker,
    SyncStatus,
    Turn,
)
from .persistence import InMemoryRunStore, RunStore
from .postprocess import post_process_synthetic_user
from .profile import Profile, SafetyConfig
from .prompts import (
    add_language_guard,
    build_default_user_prompt,
    build_responder_messages,
    build_synthetic_user_messages,
    build_synthetic_user_prompt,
)
from .safety import SafetyContext, apply_safety
from .scenario import Scenario
from .scoring import aggregate_scores
from .state import ConversationState, TurnDraft, TurnStep

logger = logging.getLogger(__name__)

USER_FALLBACK_TEXT = {
    "es": "No entiendo bien, ¿podrías explicarme más?",
    "en": "I don't quite understand, could you explain a bit more?",
}

RESPONDER_FALLBACK_TEXT = {
    "es": (
        "Estoy teniendo un problema técnico para responder ahora mismo. "
        "¿Querés que lo intentemos de nuevo en unos segundos?"
    ),
    "en": (
        "I'm having a technical problem responding right now. "
        "Would you like to try again in a few seconds?"
    ),
}

DEFAULT_GENERATION_TIMEOUT = 20.0
DEFAULT_PERSISTENCE_TIMEOUT = 10.0


class TurnOrchestrator:
    """Runs scenarios turn by turn against a generation backend.

    Each turn asks the beat sequencer for the narrative beat, generates the
    synthetic user's utterance and the responder's reply, moderates the
    reply, persists both turns and refreshes the short memory. Generation
    failures and timeouts are replaced by fallback text, persistence and
    event failures are recorded in the sync status; neither stops the run.

    Example usage:
        orchestrator = TurnOrchestrator(
            backend=SimulatedBackend(),
            run_store=InMemoryRunStore(),
            event_sink=InMemoryEventSink(),
        )
        result = await orchestrator.run_scenario(
            scenario,
            RunOptions(max_turns=8),
            system_spec="You are Nini...",
            profiles=[profile],
        )
    """

    def __init__(
        self,
        backend: Optional[GenerationBackend] = None,
        run_store: Optional[RunStore] = None,
        event_sink: Optional[EventSink] = None,
        *,
        memory_options: Optional[MemoryOptions] = None,
        generation_timeout: Optional[float] = None,
        persistence_timeout: float = DEFAULT_PERSISTENCE_TIMEOUT,
        rng: Optional[random.Random] = None,
        trace_output_dir: Optional[Union[str, Path]] = None,
        default_lang: str = "es",
        language_strictness: float = 0.9,
    ):
        """Initialize the orchestrator.

        Args:
            backend: Generation backend; built from the generation config
                passed to ``run_scenario`` when omitted
            run_store: Persistence collaborator; an in-memory store with sync
                disabled when omitted
            event_sink: Event log; events go to stdlib logging when omitted
            memory_options: Options for short memory extraction
            generation_timeout: Seconds allowed for each generation call,
                retries included; defaults to the backend's ``time_budget``
            persistence_timeout: Seconds allowed for each store or sink call
            rng: Seeds one random source per conversation for beat bias,
                post-processing and simulated replies
            trace_output_dir: Directory for per-conversation JSON exports
            default_lang: Language used when nothing else specifies one
            language_strictness: Strictness of the responder language guard
        """
        self._backend = backend
        self._sync_enabled = run_store is not None
        self._run_store: RunStore = run_store if run_store is not None else InMemoryRunStore()
        self._event_sink: EventSink = event_sink if event_sink is not None else LoggingEventSink()
        self._memory_options = memory_options or MemoryOptions()
        self._generation_timeout = generation_timeout
        self._persistence_timeout = persistence_timeout
        self._rng = rng or random.Random()
        self._trace_output_dir = Path(trace_output_dir) if trace_output_dir else None
        self._default_lang = default_lang
        self._language_strictness = language_strictness

    async def run_scenario(
        self,
        scenario: Scenario,
        options: Optional[RunOptions] = None,
        system_spec: str = "",
        safety_config: Optional[SafetyConfig] = None,
        generation_config: Optional[GenerationConfig] = None,
        simulation_only: bool = False,
        profiles: Union[Profile, Sequence[Profile], None] = None,
    ) -> RunResult:
        """Run ``options.conversations_per_scenario`` conversations per profile.

        Conversations run concurrently up to ``options.max_parallel``. One
        ConversationResult is returned for every requested conversation,
        including aborted ones.
        """
        options = options or RunOptions()
        if isinstance(profiles, Profile):
            profile_list: list[Optional[Profile]] = [profiles]
        elif profiles:
            profile_list = list(profiles)
        else:
            profile_list = [None]

        # Simulated runs get one SimulatedBackend per conversation
        backend: Optional[GenerationBackend] = None
        owned = False
        if not simulation_only:
            backend = self._backend
            if backend is None:
                backend = create_backend(generation_config)
                owned = True

        if owned:
            async with backend:
                conversations = await self._run_batch(
                    backend, scenario, options, system_spec, safety_config, profile_list
                )
        else:
            conversations = await self._run_batch(
                backend, scenario, options, system_spec, safety_config, profile_list
            )

        return RunResult(scenario_id=scenario.scenario_id, conversations=conversations)

    async def _run_batch(
        self,
        backend: Optional[GenerationBackend],
        scenario: Scenario,
        options: RunOptions,
        system_spec: str,
        safety_config: Optional[SafetyConfig],
        profile_list: list[Optional[Profile]],
    ) -> list[ConversationResult]:
        semaphore = asyncio.Semaphore(options.max_parallel)

        async def run_with_semaphore(profile: Optional[Profile]) -> ConversationResult:
            async with semaphore:
                return await self._run_conversation(
                    backend, scenario, profile, options, system_spec, safety_config
                )

        tasks = [
            run_with_semaphore(profile)
            for profile in profile_list
            for _ in range(options.conversations_per_scenario)
        ]
        return list(await asyncio.gather(*tasks))

    def _resolve_lang(self, scenario: Scenario, profile: Optional[Profile], options: RunOptions) -> str:
        if options.lang:
            return options.lang
        if profile and profile.lang in ("es", "en"):
            return profile.lang
        if scenario.language in ("es", "en"):
            return scenario.language
        return self._default_lang

    async def _run_conversation(
        self,
        backend: Optional[GenerationBackend],
        scenario: Scenario,
        profile: Optional[Profile],
        options: RunOptions,
        system_spec: str,
        global_safety: Optional[SafetyConfig],
    ) -> ConversationResult:
        rng = random.Random(self._rng.random())
        if backend is None:
            backend = SimulatedBackend(rng)
        conversation_id = str(uuid.uuid4())
        started_at = datetime.now()
        lang = self._resolve_lang(scenario, profile, options)
        profile_id = profile.profile_id if profile else None

        try:
            run_id = await self._create_run(scenario, profile_id, options)
        except RunSetupError as e:
            logger.error(f"Conversation {conversation_id} aborted: {e}")
            await self._safe_log_event(
                Event(
                    level=EventLevel.ERROR,
                    type=EventType.RUN_ABORTED,
                    scenario_id=scenario.scenario_id,
                    profile_id=profile_id,
                    severity=EventSeverity.HIGH,
                    meta={"conversation_id": conversation_id, "error": str(e)},
                )
            )
            return ConversationResult(
                conversation_id=conversation_id,
                scenario_id=scenario.scenario_id,
                profile_id=profile_id,
                status="aborted",
                sync=SyncStatus(enabled=self._sync_enabled, status="failed"),
                error=str(e),
                started_at=started_at,
                finished_at=datetime.now(),
            )

        state = ConversationState(
            conversation_id=conversation_id,
            scenario=scenario,
            profile=profile,
            options=options,
            lang=lang,
            run_id=run_id,
            rng=rng,
            sequencer=BeatSequencer(
                options.max_turns,
                profile.beat_bias if profile and options.story_mode else None,
                rng,
            ),
            memory_options=self._memory_options.model_copy(update={"lang": lang}),
            lint_policy=LintPolicy.from_system_spec(system_spec),
        )
        system_prompt = add_language_guard(system_spec, scenario.language, self._language_strictness)

        status = "completed"
        error: Optional[str] = None
        try:
            # The run exists from here on, so cancellation must finish it
            await self._emit(
                state,
                EventLevel.INFO,
                EventType.RUN_START,
                meta={
                    "conversation_id": conversation_id,
                    "max_turns": options.max_turns,
                    "lang": lang,
                },
            )
            for turn_index in range(1, options.max_turns + 1):
                await self._run_turn(state, backend, system_prompt, global_safety, turn_index)
        except asyncio.CancelledError:
            logger.warning(f"Conversation {conversation_id} cancelled, finishing run {run_id}")
            await asyncio.shield(self._finish(state, "cancelled"))
            raise
        except Exception as e:
            logger.exception(f"Conversation {conversation_id} failed: {e}")
            status = "failed"
            error = str(e)

        await self._finish(state, status)
        result = self._build_result(state, status, error, started_at)

        if self._trace_output_dir:
            save_conversation(result, self._trace_output_dir)

        return result

    async def _run_turn(
        self,
        state: ConversationState,
        backend: GenerationBackend,
        system_prompt: str,
        global_safety: Optional[SafetyConfig],
        turn_index: int,
    ) -> None:
        draft = TurnDraft(
            turn_index=turn_index,
            beat=state.sequencer.beat_for_turn(turn_index - 1),
            is_final=turn_index == state.options.max_turns,
            memory_facts=list(state.memory.facts),
        )

        async def gen_user() -> TurnStep:
            await self._generate_user(state, backend, draft)
            return TurnStep.GEN_RESPONDER

        async def gen_responder() -> TurnStep:
            await self._generate_responder(state, backend, system_prompt, draft)
            return TurnStep.MODERATE

        async def moderate() -> TurnStep:
            await self._moderate(state, global_safety, draft)
            return TurnStep.PERSIST

        async def persist() -> TurnStep:
            await self._persist(state, draft)
            return TurnStep.ADVANCE

        async def advance() -> TurnStep:
            await self._advance(state, draft)
            return TurnStep.DONE

        steps = {
            TurnStep.GEN_USER: gen_user,
            TurnStep.GEN_RESPONDER: gen_responder,
            TurnStep.MODERATE: moderate,
            TurnStep.PERSIST: persist,
            TurnStep.ADVANCE: advance,
        }
        step = TurnStep.GEN_USER
        while step != TurnStep.DONE:
            step = await steps[step]()

    def _generation_budget(self, backend: GenerationBackend) -> float:
        """Outer timeout for one generate call.

        A backend that retries reports its worst case as ``time_budget`` so
        that timed-out attempts still get their retries.
        """
        if self._generation_timeout is not None:
            return self._generation_timeout
        return getattr(backend, "time_budget", None) or DEFAULT_GENERATION_TIMEOUT

    async def _call_backend(
        self,
        backend: GenerationBackend,
        role: Speaker,
        request: GenerationRequest,
    ) -> GenerationResult:
        try:
            result = await asyncio.wait_for(
                backend.generate(role, request),
                timeout=self._generation_budget(backend),
            )
        except asyncio.TimeoutError:
            return GenerationResult(success=False, meta={"error": "Request timeout"})
        except Exception as e:
            return GenerationResult(success=False, meta={"error": str(e)})

        if result.success and not result.text.strip():
            return GenerationResult(success=False, meta={**result.meta, "error": "Empty response"})
        return result

    async def _generate_user(
        self,
        state: ConversationState,
        backend: GenerationBackend,
        draft: TurnDraft,
    ) -> None:
        memory = ShortMemory(facts=draft.memory_facts)
        if state.profile:
            prompt = build_synthetic_user_prompt(state.profile, state.scenario.seed_text, draft.beat, memory)
        else:
            prompt = build_default_user_prompt(state.scenario.seed_text, draft.beat, memory, state.lang)

        request = GenerationRequest(
            system_prompt=prompt,
            messages=build_synthetic_user_messages(prompt, state.lang),
            beat=draft.beat,
            memory_facts=draft.memory_facts,
            turn_index=draft.turn_index,
            is_final_turn=draft.is_final,
            lang=state.lang,
        )
        result = await self._call_backend(backend, Speaker.SYNTHETIC_USER, request)

        if not result.success:
            error = result.meta.get("error", "unknown error")
            logger.error(f"Synthetic user generation failed on turn {draft.turn_index}: {error}")
            draft.user_text = USER_FALLBACK_TEXT.get(state.lang, USER_FALLBACK_TEXT["es"])
            draft.user_degraded = True
            draft.user_meta = {"fallback": True, "error": error}
            await self._emit(
                state,
                EventLevel.ERROR,
                EventType.LLM_USER_ERROR,
                turn_index=draft.turn_index,
                severity=EventSeverity.MEDIUM,
                meta={"error": error},
            )
            return

        text = result.text
        draft.user_meta = dict(result.meta)
        if state.profile:
            text, post = post_process_synthetic_user(
                text,
                draft.is_final,
                state.profile.question_rate,
                lang=state.lang,
                hard_char_limit=state.profile.verbosity.hard_char_limit,
                rng=state.rng,
            )
            draft.user_meta["postprocess"] = {
                "early_closure_detected": post.early_closure_detected,
                "question_count_before": post.question_count_before,
                "question_count_after": post.question_count_after,
                "strategy": post.strategy,
                "truncated": post.truncated,
            }
        draft.user_text = text

    async def _generate_responder(
        self,
        state: ConversationState,
        backend: GenerationBackend,
        system_prompt: str,
        draft: TurnDraft,
    ) -> None:
        pending = Turn(turn_index=draft.turn_index, speaker=Speaker.SYNTHETIC_USER, text=draft.user_text)
        request = GenerationRequest(
            system_prompt=system_prompt,
            messages=build_responder_messages(system_prompt, [*state.transcript, pending]),
            beat=draft.beat,
            memory_facts=draft.memory_facts,
            turn_index=draft.turn_index,
            is_final_turn=draft.is_final,
            lang=state.lang,
        )
        result = await self._call_backend(backend, Speaker.RESPONDER, request)

        if result.success:
            draft.responder_text = result.text
            draft.responder_meta = dict(result.meta)
            return

        error = result.meta.get("error", "unknown error")
        logger.error(f"Responder generation failed on turn {draft.turn_index}: {error}")
        draft.responder_text = RESPONDER_FALLBACK_TEXT.get(state.lang, RESPONDER_FALLBACK_TEXT["es"])
        draft.responder_degraded = True
        draft.responder_meta = {"fallback": True, "error": error}
        await self._emit(
            state,
            EventLevel.ERROR,
            EventType.LLM_RESPONDER_ERROR,
            turn_index=draft.turn_index,
            severity=EventSeverity.HIGH,
            meta={"error": error},
        )

    async def _moderate(
        self,
        state: ConversationState,
        global_safety: Optional[SafetyConfig],
        draft: TurnDraft,
    ) -> None:
        ctx = SafetyContext(
            speaker=Speaker.RESPONDER,
            lang=state.lang,
            profile=state.profile,
            global_safety=global_safety,
        )
        safety = apply_safety(draft.responder_text, ctx)
        draft.safety = safety
        if not safety.escalated:
            return

        draft.responder_text = safety.text
        state.escalations.append(
            SafetyEscalation(
                turn_index=draft.turn_index,
                matched=safety.matched,
                escalation=safety.escalation,
            )
        )
        await self._emit(
            state,
            EventLevel.WARN,
            EventType.SAFETY_ESCALATED,
            turn_index=draft.turn_index,
            meta={"matched": safety.matched, "escalation": safety.escalation},
        )

    async def _persist(self, state: ConversationState, draft: TurnDraft) -> None:
        records = [
            (Speaker.SYNTHETIC_USER, draft.user_text, draft.user_degraded, draft.user_meta, None),
            (Speaker.RESPONDER, draft.responder_text, draft.responder_degraded, draft.responder_meta, draft.safety),
        ]
        for speaker, text, degraded, meta, safety in records:
            turn = Turn(
                turn_index=draft.turn_index,
                sequence=len(state.transcript) + 1,
                speaker=speaker,
                text=text,
                run_id=state.run_id,
                beat=draft.beat,
                metrics=compute_turn_metrics(text, state.lang),
                safety=safety,
                memory_facts=draft.memory_facts,
                degraded=degraded,
                metadata=meta,
            )
            # The in-memory transcript is authoritative even if the store fails
            state.transcript.append(turn)
            if degraded:
                state.degraded_turns += 1
            await self._store_turn(state, turn)

    async def _store_turn(self, state: ConversationState, turn: Turn) -> None:
        operation = "insert_turn"
        try:
            turn_id = await asyncio.wait_for(
                self._run_store.insert_turn(
                    state.run_id,
                    turn.sequence,
                    turn.speaker,
                    turn.text,
                    turn.beat,
                    turn.metrics,
                    turn_index=turn.turn_index,
                    memory_facts=turn.memory_facts,
                    degraded=turn.degraded,
                ),
                timeout=self._persistence_timeout,
            )
            if turn.safety is not None:
                operation = "upsert_turn_safety"
                await asyncio.wait_for(
                    self._run_store.upsert_turn_safety(turn_id, turn.safety),
                    timeout=self._persistence_timeout,
                )
        except Exception as e:
            state.persist_failed = True
            logger.error(f"Failed to persist turn {turn.turn_index} ({turn.speaker.value}): {e!r}")
            await self._emit(
                state,
                EventLevel.ERROR,
                EventType.PERSIST_ERROR,
                turn_index=turn.turn_index,
                severity=EventSeverity.MEDIUM,
                meta={"operation": operation, "speaker": turn.speaker.value, "error": repr(e)},
            )

    async def _advance(self, state: ConversationState, draft: TurnDraft) -> None:
        try:
            state.memory = await extract_short_memory(state.transcript, state.memory_options)
        except Exception as e:
            logger.warning(f"Memory refresh failed on turn {draft.turn_index}, keeping previous facts: {e}")

        logger.debug(
            f"Turn {draft.turn_index}/{state.options.max_turns} done "
            f"({draft.beat.name.value}, {len(state.memory.facts)} facts)"
        )
        await self._emit(
            state,
            EventLevel.INFO,
            EventType.TURN_END,
            turn_index=draft.turn_index,
            meta={
                "beat": draft.beat.name.value,
                "user_degraded": draft.user_degraded,
                "responder_degraded": draft.responder_degraded,
                "escalated": bool(draft.safety and draft.safety.escalated),
                "memory_facts": len(state.memory.facts),
            },
        )

    async def _create_run(
        self,
        scenario: Scenario,
        profile_id: Optional[str],
        options: RunOptions,
    ) -> str:
        try:
            return await asyncio.wait_for(
                self._run_store.create_run(
                    scenario.scenario_id,
                    profile_id,
                    options.story_mode,
                    options.max_turns,
                ),
                timeout=self._persistence_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise RunSetupError(f"Could not create run for scenario {scenario.scenario_id}: {e!r}") from e

    async def _finish(self, state: ConversationState, status: str) -> None:
        try:
            await asyncio.wait_for(
                self._run_store.finish_run(state.run_id, status),
                timeout=self._persistence_timeout,
            )
        except Exception as e:
            state.persist_failed = True
            logger.error(f"Failed to finish run {state.run_id}: {e!r}")
            await self._emit(
                state,
                EventLevel.ERROR,
                EventType.PERSIST_ERROR,
                severity=EventSeverity.MEDIUM,
                meta={"operation": "finish_run", "error": repr(e)},
            )

        await self._emit(
            state,
            EventLevel.INFO,
            EventType.RUN_END,
            meta={
                "conversation_id": state.conversation_id,
                "status": status,
                "turns": len(state.transcript),
                "degraded_turns": state.degraded_turns,
                "escalations": len(state.escalations),
            },
        )

    async def _emit(
        self,
        state: ConversationState,
        level: EventLevel,
        event_type: str,
        turn_index: Optional[int] = None,
        severity: Optional[EventSeverity] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> None:
        event = Event(
            level=level,
            type=event_type,
            run_id=state.run_id,
            scenario_id=state.scenario.scenario_id,
            profile_id=state.profile_id,
            turn_index=turn_index,
            severity=severity,
            meta=meta or {},
        )
        if not await self._safe_log_event(event):
            state.events_failed = True

    async def _safe_log_event(self, event: Event) -> bool:
        try:
            await asyncio.wait_for(self._event_sink.log_event(event), timeout=self._persistence_timeout)
            return True
        except Exception as e:
            logger.error(f"Failed to log {event.type} event: {e!r}")
            return False

    def _build_result(
        self,
        state: ConversationState,
        status: str,
        error: Optional[str],
        started_at: datetime,
    ) -> ConversationResult:
        if state.persist_failed:
            sync_status = "failed"
        elif state.events_failed:
            sync_status = "pending"
        else:
            sync_status = "synced"

        lints = run_all_linters(state.transcript, state.lint_policy)
        scores = aggregate_scores(lints)
        logger.debug(
            f"Conversation {state.conversation_id}: {sum(len(lint.findings) for lint in lints)} lint findings, "
            f"total score {scores.total}"
        )

        return ConversationResult(
            conversation_id=state.conversation_id,
            scenario_id=state.scenario.scenario_id,
            profile_id=state.profile_id,
            run_id=state.run_id,
            status=status,
            turns=list(state.transcript),
            memory=state.memory,
            metrics=aggregate_run_metrics(state.transcript),
            sync=SyncStatus(enabled=self._sync_enabled, status=sync_status, run_id=state.run_id),
            escalations=list(state.escalations),
            degraded_turns=state.degraded_turns,
            lints=lints,
            scores=scores,
            error=error,
            started_at=started_at,
            finished_at=datetime.now(),
        )


async def run_scenario(
    scenario: Scenario,
    options: Optional[RunOptions] = None,
    system_spec: str = "",
    safety_config: Optional[SafetyConfig] = None,
    generation_config: Optional[GenerationConfig] = None,
    simulation_only: bool = False,
    profiles: Union[Profile, Sequence[Profile], None] = None,
    *,
    backend: Optional[GenerationBackend] = None,
    run_store: Optional[RunStore] = None,
    event_sink: Optional[EventSink] = None,
    **orchestrator_kwargs: Any,
) -> RunResult:
    """Run a scenario with a one-off ``TurnOrchestrator``."""
    orchestrator = TurnOrchestrator(backend, run_store, event_sink, **orchestrator_kwargs)
    return await orchestrator.run_scenario(
        scenario,
        options,
        system_spec,
        safety_config,
        generation_config,
        simulation_only,
        profiles,
    )
