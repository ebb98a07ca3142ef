"""
Pluggable AI reasoning for weekly adaptations.

The engine only ever calls `suggest_adaptations(context)`. Strategies return raw
candidate dicts ({type, description, reason, impact, adjustments?}); the engine
validates them like any other candidate.
"""

import json
import logging

from fitplan.errors import ExternalDependencyDegradation

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an experienced strength and conditioning coach reviewing one week of training.
Suggest at most 3 adjustments for next week. Be conservative: never raise intensity by more than 5%
or volume by more than 10% in a week.

Answer with JSON only, in this shape:
{"adaptations": [{"type": "volume|intensity|exercise_swap|rest_adjustment|progression",
                  "description": "...", "reason": "...", "impact": "low|medium|high",
                  "adjustments": {"volume_change": -0.1, "intensity_change": 0.0, "rest_seconds_change": 0}}]}"""


class AdaptationAdvisor:
    """Strategy interface for extra adaptation candidates."""
    name = 'base'

    def suggest_adaptations(self, context):
        raise NotImplementedError


class RuleOnlyAdvisor(AdaptationAdvisor):
    """Default: rules only, no external calls."""
    name = 'rules'

    def suggest_adaptations(self, context):
        return []


class OpenAIAdvisor(AdaptationAdvisor):
    name = 'openai'

    def __init__(self, client, model='gpt-4.1', timeout=20.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    def _build_prompt(self, context):
        return (
            "Weekly training review.\n\n"
            f"Plan: {json.dumps(context.get('plan_summary', {}))}\n"
            f"Deficiencies: {json.dumps(context.get('deficiencies', {}))}\n"
            f"Adherence: {json.dumps(context.get('adherence_analysis', {}))}\n"
            f"Preferences: {json.dumps(context.get('user_preferences', {}))}\n"
        )

    def suggest_adaptations(self, context):
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_prompt(context)},
                ],
                response_format={"type": "json_object"},
                max_tokens=600,
                temperature=0.3,
                timeout=self.timeout,
            )
            data = json.loads(response.choices[0].message.content or '{}')
        except Exception as e:
            raise ExternalDependencyDegradation(f"AI reasoning unavailable: {e}") from e

        items = data.get('adaptations') if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ExternalDependencyDegradation('AI response has no adaptations list')
        return [item for item in items if isinstance(item, dict)]


def advisor_from_config(config):
    """OpenAI when a key is configured, rules only otherwise."""
    api_key = config.get('OPENAI_API_KEY')
    if not api_key:
        return RuleOnlyAdvisor()
    from openai import OpenAI
    timeout = config.get('AI_TIMEOUT_SECONDS', 20.0)
    client = OpenAI(api_key=api_key, timeout=timeout)
    logger.info("AI reasoning enabled with model %s", config.get('OPENAI_MODEL', 'gpt-4.1'))
    return OpenAIAdvisor(client, config.get('OPENAI_MODEL', 'gpt-4.1'), timeout)
