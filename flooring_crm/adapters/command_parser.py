import asyncio
import json
import logging
import re
from typing import Dict, Any, Optional

from openai import OpenAI

from flooring_crm.models import COMMAND_ACTIONS, CommandResult

logger = logging.getLogger(__name__)

PARSE_FAILURE_FEEDBACK = "I apologize, but I had trouble understanding that command. Could you please rephrase it?"
API_FAILURE_FEEDBACK = "Sorry, I encountered an error processing your request. Please try again."

# Fenced ```json block first, otherwise the outermost braces
JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```|(\{[\s\S]*\})", re.DOTALL)

SYSTEM_PROMPT = """You are an AI assistant for a flooring CRM system. Parse voice commands and return structured actions in JSON format.

ALWAYS return response in this exact JSON format:
{{
  "action": "action_name",
  "parameters": {{ parsed parameters }},
  "feedback": "user feedback message"
}}

Available actions and parameters:
- create_client: {{ name, company, email, phone, address }}
- create_estimate: {{ clientId, items, notes }}
- schedule_installation: {{ date, time, location, notes }}
- order_materials: {{ type, quantity, supplier }}
- navigate: {{ path }}
- search: {{ query, type }}
- help: {{ topic }}

Current context: {context}

Example response:
{{
  "action": "create_client",
  "parameters": {{
    "name": "John Smith",
    "company": "ABC Corp",
    "email": "john@abc.com"
  }},
  "feedback": "I'll help you create a new client for John Smith from ABC Corp"
}}"""


class CommandParseError(ValueError):
    """Raised when a model reply cannot be turned into a command"""


class VoiceCommandProcessor:
    """Turns spoken CRM commands into structured actions via a hosted language model"""

    def __init__(self, openai_api_key: str, model: str = "gpt-3.5-turbo"):
        self.openai_client = OpenAI(api_key=openai_api_key)
        self.model = model
        self.context: Dict[str, Any] = {}

        self.temperature = 0
        self.max_tokens = 150

    def update_context(self, new_context: Dict[str, Any]) -> None:
        self.context = {**self.context, **new_context}

    def clear_context(self) -> None:
        self.context = {}

    def build_messages(self, command: str, context: Optional[Dict[str, Any]] = None) -> list:
        if context is None:
            context = self.context
        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(context=json.dumps(context, default=str))},
            {"role": "user", "content": command},
        ]

    async def process_command(self, command: str, session_id: Optional[str] = None,
                              context: Optional[Dict[str, Any]] = None) -> CommandResult:
        """
        Parse a voice command into a CommandResult; never raises.

        ``context`` is used for this call only and leaves the processor's own
        context untouched, so one processor can serve many sessions.
        """
        try:
            response = await asyncio.to_thread(
                self.openai_client.chat.completions.create,
                model=self.model,
                messages=self.build_messages(command, context),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

            content = response.choices[0].message.content
            if not content:
                raise RuntimeError("Empty response from OpenAI")

        except Exception as e:
            logger.error(f"OpenAI API error for {session_id}: {e}")
            return CommandResult(
                action="help",
                parameters={},
                feedback=API_FAILURE_FEEDBACK,
                success=False,
                error=str(e) or "Failed to process command",
            )

        try:
            parsed = self.parse_reply(content)
        except CommandParseError as e:
            logger.error(f"Failed to parse OpenAI response for {session_id}: {e}")
            return CommandResult(
                action="help",
                parameters={},
                feedback=PARSE_FAILURE_FEEDBACK,
                success=False,
                error="Failed to understand command",
            )

        logger.info(f"🧭 Parsed command for {session_id}: {parsed['action']}")
        return CommandResult(
            action=parsed["action"],
            parameters=parsed["parameters"],
            feedback=parsed["feedback"],
            success=True,
        )

    def parse_reply(self, content: str) -> Dict[str, Any]:
        """Extract and validate the JSON action from a model reply"""
        json_str = self.extract_json(content)
        if not json_str:
            raise CommandParseError("No JSON found in response")

        try:
            result = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise CommandParseError(f"Invalid JSON: {e}") from e

        if not isinstance(result, dict):
            raise CommandParseError("Response is not a JSON object")

        # Validate required fields
        if not result.get("action") or not result.get("feedback") or "parameters" not in result:
            raise CommandParseError("Invalid response format")

        if result["action"] not in COMMAND_ACTIONS:
            raise CommandParseError(f"Unknown action: {result['action']}")

        if not isinstance(result["parameters"], dict):
            raise CommandParseError("Parameters must be an object")

        return result

    @staticmethod
    def extract_json(content: str) -> Optional[str]:
        match = JSON_BLOCK_RE.search(content)
        if not match:
            return None
        json_str = match.group(1) or match.group(2)
        return json_str.strip() if json_str else None
