import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .agents import WORKER_SYSTEMS
from .llm import CompletionClient
from .schemas import AgentResponse, AgentTask
from .web_search import WebSearchTool


logger = logging.getLogger("uvicorn.error")

RESEARCH_RESULTS = 3
SUMMARY_SENTENCES = 3
MAX_INSIGHTS = 5
INSIGHT_MARKERS = ("insight", "pattern", "conclusion")
CERTAIN_WORDS = ("clearly", "definitely", "certainly", "obviously", "evidently")
HEDGE_WORDS = ("might", "maybe", "possibly", "perhaps", "unclear", "uncertain")

# First match wins, so the order matters ("javascript" contains "java").
LANGUAGE_TABLE: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("python", ("python",)),
    ("typescript", ("typescript", "ts")),
    ("javascript", ("javascript", "js")),
    ("rust", ("rust",)),
    ("go", ("go",)),
    ("java", ("java",)),
    ("cpp", ("c++", "cpp")),
    ("csharp", ("c#", "csharp")),
)
DEFAULT_LANGUAGE = "python"

FENCE_RE = re.compile(r"```[\w+#.-]*[ \t]*\n(.*?)```", re.DOTALL)
# Plain substring counts: "format" scores as a loop, "elif" as a conditional.
LOOP_RE = re.compile(r"for|while|forEach")
CONDITIONAL_RE = re.compile(r"if|switch|case")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
RESULT_SEPARATOR = "\n\n---\n\n"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class SpecialistWorker:
    """Role-bound wrapper over the completion service.

    Subclasses build the prompt and post-process the reply. Whatever goes wrong
    inside ``execute`` is reported as a failed ``AgentResponse``; nothing is
    raised to the caller.
    """

    agent_type = ""
    temperature = 0.7
    max_tokens = 2048

    def __init__(self, llm: CompletionClient):
        self.llm = llm

    async def _complete(self, prompt: str) -> AgentResponse:
        return await self.llm.complete(
            prompt,
            system_prompt=WORKER_SYSTEMS[self.agent_type],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def _failure(self, exc: Exception, start: float) -> AgentResponse:
        logger.warning("%s worker failed: %s", self.agent_type, exc)
        return AgentResponse(
            success=False,
            error=str(exc) or f"{self.agent_type.capitalize()} agent error",
            duration_ms=_elapsed_ms(start),
        )


class ResearchWorker(SpecialistWorker):
    agent_type = "research"
    temperature = 0.3
    max_tokens = 1500

    def __init__(self, llm: CompletionClient, search_tool: WebSearchTool):
        super().__init__(llm)
        self.search_tool = search_tool

    async def execute(self, query: str, context: Optional[str] = None) -> AgentResponse:
        start = time.monotonic()
        try:
            results = await self.search_tool.search(query, RESEARCH_RESULTS)
            search_context = ""
            if results:
                lines = ["Web Search Results:", ""]
                for idx, result in enumerate(results, start=1):
                    lines.append(f"{idx}. {result.title}")
                    lines.append(f"   {result.snippet}")
                    lines.append(f"   URL: {result.url}")
                    lines.append("")
                search_context = "\n".join(lines)
            parts = [f"Research Query: {query}"]
            if context:
                parts.append(f"Context: {context}")
            parts.append(search_context)
            parts.append("Provide detailed research findings based on the search results.")
            response = await self._complete("\n\n".join(parts))
            if not response.success:
                return response
            return AgentResponse(
                success=True,
                data={
                    "findings": response.data,
                    "sources": [{"title": r.title, "url": r.url} for r in results],
                    "summary": summarize(response.data),
                    "searchResultsCount": len(results),
                },
                tokens_used=response.tokens_used,
                duration_ms=_elapsed_ms(start),
            )
        except Exception as exc:
            return self._failure(exc, start)


def summarize(text: str, sentences: int = SUMMARY_SENTENCES) -> str:
    parts = [s.strip() for s in SENTENCE_SPLIT_RE.split(text) if s.strip()]
    return ". ".join(parts[:sentences]) + "."


class AnalysisWorker(SpecialistWorker):
    agent_type = "analysis"
    temperature = 0.4
    max_tokens = 1500

    async def execute(self, data: str, analysis_type: str = "general") -> AgentResponse:
        start = time.monotonic()
        try:
            prompt = (
                f"Analysis Type: {analysis_type}\n\nData to Analyze:\n{data}\n\n"
                "Provide detailed analysis including patterns, insights, and conclusions."
            )
            response = await self._complete(prompt)
            if not response.success:
                return response
            return AgentResponse(
                success=True,
                data={
                    "analysis": response.data,
                    "insights": extract_insights(response.data),
                    "confidence": score_confidence(response.data),
                },
                tokens_used=response.tokens_used,
                duration_ms=_elapsed_ms(start),
            )
        except Exception as exc:
            return self._failure(exc, start)


def extract_insights(text: str, limit: int = MAX_INSIGHTS) -> List[str]:
    insights = []
    for line in text.split("\n"):
        if not line.strip():
            continue
        if any(marker in line for marker in INSIGHT_MARKERS):
            insights.append(line.strip())
    return insights[:limit]


def score_confidence(text: str) -> float:
    lowered = text.lower()
    score = 0.5
    score += 0.1 * sum(1 for word in CERTAIN_WORDS if word in lowered)
    score -= 0.1 * sum(1 for word in HEDGE_WORDS if word in lowered)
    return round(max(0.0, min(1.0, score)), 2)


class CodeWorker(SpecialistWorker):
    agent_type = "code"
    temperature = 0.2
    max_tokens = 2000

    async def execute(self, requirements: str) -> AgentResponse:
        start = time.monotonic()
        try:
            language = detect_language(requirements)
            prompt = (
                f"Language: {language}\n\nRequirements:\n{requirements}\n\n"
                f"Generate a clean, well-commented {language} code example only. "
                "Do not provide examples in any other language. "
                "Include only essential comments and error handling."
            )
            response = await self._complete(prompt)
            if not response.success:
                return response
            code = extract_code(response.data)
            return AgentResponse(
                success=True,
                data={
                    "code": code,
                    "language": language,
                    "explanation": extract_explanation(response.data),
                    "complexity": estimate_complexity(code),
                },
                tokens_used=response.tokens_used,
                duration_ms=_elapsed_ms(start),
            )
        except Exception as exc:
            return self._failure(exc, start)


def detect_language(requirements: str) -> str:
    lowered = requirements.lower()
    for language, needles in LANGUAGE_TABLE:
        if any(needle in lowered for needle in needles):
            return language
    return DEFAULT_LANGUAGE


def extract_code(text: str) -> str:
    match = FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def extract_explanation(text: str) -> str:
    """Prose around the code: every fenced block is removed whole, code body
    included, then stray fence lines and `//` comment lines are dropped.
    """
    prose = FENCE_RE.sub("", text)
    lines = [line for line in prose.split("\n") if not line.strip().startswith(("```", "//"))]
    return "\n".join(lines).strip()


def estimate_complexity(code: str) -> str:
    score = len(code.split("\n")) + 2 * len(LOOP_RE.findall(code)) + len(CONDITIONAL_RE.findall(code))
    if score < 20:
        return "low"
    if score < 50:
        return "medium"
    return "high"


class SynthesisWorker(SpecialistWorker):
    agent_type = "synthesis"
    temperature = 0.6
    max_tokens = 2000

    async def execute(self, user_query: str, tasks: Sequence[AgentTask]) -> AgentResponse:
        start = time.monotonic()
        try:
            results_text = RESULT_SEPARATOR.join(
                f"{task.type.upper()} Agent Result:\n{render_task_result(task)}"
                for task in tasks
                if task.status == "completed" and task.result
            )
            prompt = (
                f"Original User Query: {user_query}\n\nAgent Results:\n{results_text}\n\n"
                "Synthesize these results into a well-formatted markdown response. "
                "If there is code, wrap it in markdown code blocks with the language specified "
                "(e.g., ```python). Keep the response concise and well-structured."
            )
            response = await self._complete(prompt)
            if not response.success:
                return response
            return AgentResponse(
                success=True,
                data={
                    "synthesized": response.data,
                    "sourcesUsed": [task.type for task in tasks],
                    "completeness": assess_completeness(tasks),
                },
                tokens_used=response.tokens_used,
                duration_ms=_elapsed_ms(start),
            )
        except Exception as exc:
            return self._failure(exc, start)


def render_task_result(task: AgentTask) -> str:
    raw = task.result or ""
    try:
        parsed: Any = json.loads(raw)
    except ValueError:
        return raw
    if task.type == "code" and isinstance(parsed, dict) and parsed.get("code"):
        language = parsed.get("language") or "python"
        return (
            f"Code ({language}):\n```{language}\n{parsed['code']}\n```\n\n"
            f"Explanation: {parsed.get('explanation') or ''}"
        )
    return json.dumps(parsed, indent=2)


def assess_completeness(tasks: Sequence[AgentTask]) -> float:
    if not tasks:
        return 1.0
    completed = sum(1 for task in tasks if task.status == "completed")
    return completed / len(tasks)


def build_workers(llm: CompletionClient, search_tool: WebSearchTool) -> Dict[str, SpecialistWorker]:
    return {
        "research": ResearchWorker(llm, search_tool),
        "analysis": AnalysisWorker(llm),
        "code": CodeWorker(llm),
        "synthesis": SynthesisWorker(llm),
    }
