"""Evaluation prompt for the AI judge.

The output-format section is the contract that ``interpreter.parse_response``
relies on; keep field names and value ranges in sync with it.
"""
from __future__ import annotations

from typing import Any

from survival_index.metrics import ExternalMetrics

PROMPT_HEADER = """\
You are an AI Judge for SurvivalIndex.org, a platform that rates software's \
likelihood of survival in the AI era.

Your task is to evaluate the software project "{name}" across 6 critical \
survival levers and provide scores from 0-10 for each.
"""

PROJECT_SECTION = """\
## PROJECT INFORMATION

**Name:** {name}
**Type:** {type}
**Category:** {category}
**Description:** {description}
**Website:** {url}
**GitHub:** {github_url}
**Tags:** {tags}
**Year Created:** {year_created}
"""

METRICS_SECTION = """\
## GITHUB METRICS

- **Stars:** {stars:,}
- **Forks:** {forks:,}
- **Open Issues:** {open_issues}
- **Language:** {language}
- **License:** {license}
- **Recent Activity:** {recent_commits_count} commits in last 90 days
- **Active Development:** {active}
- **Topics:** {topics}
"""

LEVERS_SECTION = """\
## THE 6 SURVIVAL LEVERS

Evaluate each lever on a scale of 0-10:

### 1. Insight Compression (Weight: 20%)
**Definition:** The density of crystallized, hard-won knowledge encoded in the software.
- How much deep, specialized knowledge is embedded?
- Is this knowledge difficult to recreate?
- Does it capture years of domain expertise?
**Examples:** PostgreSQL (9.5), Git (9.2), Redis (8.8)

### 2. Substrate Efficiency (Weight: 18%)
**Definition:** How efficiently it runs on commodity hardware vs. requiring specialized resources.
- CPU-friendly = higher score
- GPU-dependent = lower score
- Consider memory, storage, and compute requirements
**Examples:** SQLite (9.8), VS Code (8.5), TensorFlow (5.2)

### 3. Broad Utility (Weight: 22%)
**Definition:** Cross-domain applicability and versatility.
- Can it be used across multiple industries/use-cases?
- Is it a general-purpose tool or niche-specific?
- Does it solve fundamental vs. specialized problems?
**Examples:** Python (9.7), PostgreSQL (9.5), Stripe (8.9)

### 4. Awareness/Publicity (Weight: 15%)
**Definition:** Discoverability and mindshare in the developer ecosystem.
- GitHub stars, community size, brand recognition
- Documentation quality and accessibility
- Presence in tutorials, courses, and discussions
**Examples:** React (9.8), Docker (9.5), Tailwind (8.7)

### 5. Agent Friction (Weight: 15%)
**Definition:** How easy it is for AI agents to use/integrate (LOWER friction is better, so score HIGH for low friction).
- API quality: RESTful, well-documented, consistent
- Programmatic access: SDKs, clear interfaces
- Complexity: Simple = high score, complex UI-dependent = low score
**Scoring:** Low friction (easy for agents) = HIGH score (8-10), High friction = LOW score (2-4)
**Examples:** Stripe (9.5), PostgreSQL (9.0), Photoshop (3.5)

### 6. Human Coefficient (Weight: 10%)
**Definition:** Enduring human preference and irreplaceable human value.
- Do humans *prefer* this over alternatives?
- Does it match human cognitive models/workflows?
- Is there emotional attachment or brand loyalty?
**Examples:** Git (9.0), Notion (8.5), Figma (8.8)
"""

OUTPUT_SECTION = """\
## OUTPUT FORMAT

Respond ONLY with valid JSON in this exact format:

```json
{
  "scores": {
    "insightCompression": 8.5,
    "substrateEfficiency": 7.2,
    "broadUtility": 9.0,
    "awareness": 8.8,
    "agentFriction": 7.5,
    "humanCoefficient": 8.0
  },
  "confidence": 0.85,
  "reasoning": {
    "insightCompression": "Brief explanation of score...",
    "substrateEfficiency": "Brief explanation of score...",
    "broadUtility": "Brief explanation of score...",
    "awareness": "Brief explanation of score...",
    "agentFriction": "Brief explanation of score...",
    "humanCoefficient": "Brief explanation of score...",
    "overall": "Overall survival assessment in 2-3 sentences..."
  },
  "suggestions": {
    "topPriorities": [
      "Most critical improvement needed (1-2 sentences)",
      "Second most important action (1-2 sentences)",
      "Third priority improvement (1-2 sentences)"
    ],
    "quickWins": [
      "Easy improvement that could boost score (1 sentence)",
      "Another quick win (1 sentence)"
    ],
    "longTerm": [
      "Strategic improvement for long-term survival (1-2 sentences)",
      "Another long-term recommendation (1-2 sentences)"
    ]
  }
}
```

**IMPORTANT:**
- Scores must be numbers between 0 and 10 (can include decimals)
- Confidence must be between 0 and 1
- Be critical and realistic - not everything deserves 8+
- Consider both current state and future AI landscape
- Reasoning should be concise but insightful
- Suggestions should be specific, actionable, and prioritized by impact
- Focus suggestions on the lowest-scoring levers that would have the biggest impact"""


def _or(value: Any, fallback: str) -> Any:
    if value is None or value == "":
        return fallback
    return value


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def build_metrics_block(metrics: ExternalMetrics) -> str:
    return METRICS_SECTION.format(
        stars=metrics.stars,
        forks=metrics.forks,
        open_issues=metrics.open_issues,
        language=_or(metrics.language, "N/A"),
        license=_or(metrics.license, "None"),
        recent_commits_count=metrics.recent_commits_count,
        active="Yes" if metrics.is_active else "No",
        topics=", ".join(metrics.topics) or "None",
    )


def build_prompt(project: Any, metrics: ExternalMetrics | None = None) -> str:
    """Render the evaluation request for one project.

    ``project`` is anything exposing the Project attributes (ORM row or a
    simple namespace).  Output is deterministic for equal inputs.
    """
    sections = [
        PROMPT_HEADER.format(name=project.name),
        PROJECT_SECTION.format(
            name=project.name,
            type=_enum_value(project.type),
            category=_enum_value(project.category),
            description=project.description,
            url=_or(getattr(project, "url", None), "N/A"),
            github_url=_or(getattr(project, "github_url", None), "N/A"),
            tags=_or(getattr(project, "tags", None), "N/A"),
            year_created=_or(getattr(project, "year_created", None), "Unknown"),
        ),
    ]
    if metrics is not None:
        sections.append(build_metrics_block(metrics))
    sections.append(LEVERS_SECTION)
    sections.append(OUTPUT_SECTION)
    return "\n".join(sections)
