"""
Text-generation providers and usage monitoring.

Both the proposal and translation stages talk to the language model through
the narrow TextGenerator protocol: generate(request, credential) -> text.
Credentials are passed on every call and never stored on the provider.
"""

import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx
import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from ..errors import GenerationError
from .logger import get_logger


class ModelType(Enum):
    """Types of LLM backends"""
    GEMINI = "gemini"
    OPENAI = "openai"
    LLAMA = "llama"


@dataclass(frozen=True)
class GenerationRequest:
    """One text-generation call"""
    prompt: str
    system_instruction: str = ''
    temperature: float = 0.7
    max_tokens: int = 2048
    model: Optional[str] = None


@dataclass
class UsageStats:
    """Usage statistics for a model"""
    model_name: str
    total_requests: int = 0
    estimated_tokens: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_used: Optional[str] = None
    average_response_time: float = 0.0


class TextGenerator(Protocol):
    """Capability interface injected into the proposer and the translator"""

    def generate(self, request: GenerationRequest, credential: Optional[str]) -> str:
        ...


def _status_reason(status_code: Optional[int]) -> str:
    if status_code in (401, 403):
        return 'credential'
    if status_code == 429:
        return 'rate_limited'
    if status_code is not None and 400 <= status_code < 500:
        return 'malformed'
    return 'unreachable'


class GeminiTextGenerator:
    """Google Gemini backend through the google-genai client"""

    def __init__(self, model: str = 'gemini-2.5-flash'):
        self.model = model

    def generate(self, request: GenerationRequest, credential: Optional[str]) -> str:
        if not credential:
            raise GenerationError("A Gemini API key is required", reason='credential')

        model = request.model or self.model
        client = genai.Client(api_key=credential)
        config = genai_types.GenerateContentConfig(
            system_instruction=request.system_instruction or None,
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
        )

        try:
            resp = client.models.generate_content(model=model, contents=request.prompt, config=config)
        except genai_errors.APIError as e:
            raise GenerationError(f"Gemini request failed: {e}", reason=_status_reason(e.code)) from e
        except httpx.TimeoutException as e:
            raise GenerationError(f"Gemini request timed out: {e}", reason='timeout') from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Gemini unreachable: {e}", reason='unreachable') from e

        text = getattr(resp, 'text', None)
        if not text:
            raise GenerationError("Gemini returned an empty response", reason='malformed')
        return text


class OpenAICompatibleTextGenerator:
    """Any /chat/completions endpoint (OpenAI and compatible gateways)"""

    def __init__(self, model: str = 'gpt-4o-mini', base_url: str = 'https://api.openai.com/v1',
                 timeout: float = 90.0):
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def generate(self, request: GenerationRequest, credential: Optional[str]) -> str:
        if not credential:
            raise GenerationError("An API key is required", reason='credential')

        messages = []
        if request.system_instruction:
            messages.append({'role': 'system', 'content': request.system_instruction})
        messages.append({'role': 'user', 'content': request.prompt})

        try:
            r = requests.post(
                f"{self.base_url}/chat/completions",
                headers={'Authorization': f"Bearer {credential}"},
                json={
                    'model': request.model or self.model,
                    'messages': messages,
                    'temperature': request.temperature,
                    'max_tokens': request.max_tokens,
                },
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise GenerationError(f"Generation request timed out: {e}", reason='timeout') from e
        except requests.RequestException as e:
            raise GenerationError(f"Generation service unreachable: {e}", reason='unreachable') from e

        if r.status_code >= 400:
            raise GenerationError(f"Generation service returned HTTP {r.status_code}",
                                  reason=_status_reason(r.status_code))

        try:
            return r.json()['choices'][0]['message']['content'] or ''
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GenerationError("Unexpected response shape from generation service", reason='malformed') from e


class OllamaTextGenerator:
    """Local Llama-family models served by Ollama; no credential needed"""

    def __init__(self, model: str = 'llama3.1:8b', base_url: str = 'http://localhost:11434',
                 timeout: float = 90.0):
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def generate(self, request: GenerationRequest, credential: Optional[str]) -> str:
        try:
            r = requests.post(f"{self.base_url}/api/generate", json={
                'model': request.model or self.model,
                'prompt': request.prompt,
                'system': request.system_instruction,
                'stream': False,
                'options': {
                    'temperature': request.temperature,
                    'num_predict': request.max_tokens,
                },
            }, timeout=self.timeout)
            r.raise_for_status()
        except requests.Timeout as e:
            raise GenerationError(f"Ollama generation timed out: {e}", reason='timeout') from e
        except requests.HTTPError as e:
            raise GenerationError(f"Ollama generation failed: {e}",
                                  reason=_status_reason(e.response.status_code if e.response is not None else None)) from e
        except requests.RequestException as e:
            raise GenerationError(f"Ollama unreachable: {e}", reason='unreachable') from e

        try:
            return r.json().get('response', '')
        except ValueError as e:
            raise GenerationError("Ollama returned invalid JSON", reason='malformed') from e


def create_text_generator(provider: str, model: str, base_url: Optional[str] = None) -> TextGenerator:
    """Build a provider by name: gemini, openai or llama/ollama"""
    provider = provider.lower()
    if provider == ModelType.GEMINI.value:
        return GeminiTextGenerator(model=model)
    if provider == ModelType.OPENAI.value:
        return OpenAICompatibleTextGenerator(model=model, base_url=base_url or 'https://api.openai.com/v1')
    if provider in (ModelType.LLAMA.value, 'ollama'):
        return OllamaTextGenerator(model=model, base_url=base_url or 'http://localhost:11434')
    raise ValueError(f"Unsupported LLM provider: {provider}")


class LLMMonitor:
    """Record usage per model and fall back along a chain of generators"""

    FALLBACK_REASONS = ('unreachable', 'rate_limited', 'timeout')

    def __init__(self, primary: TextGenerator, fallback_chain: Optional[List[TextGenerator]] = None):
        self.primary = primary
        self.fallback_chain = list(fallback_chain or [])
        self.usage_stats: Dict[str, UsageStats] = {}
        self.logger = get_logger("LLMMonitor")
        self._lock = threading.Lock()

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough token count for usage accounting"""
        return int(len(text.split()) * 1.3)

    @staticmethod
    def _model_name(generator: TextGenerator, request: GenerationRequest) -> str:
        return request.model or getattr(generator, 'model', type(generator).__name__)

    def record_usage(self, model_name: str, tokens_used: int, response_time: float, success: bool = True):
        """Record usage statistics"""
        with self._lock:
            stats = self.usage_stats.setdefault(model_name, UsageStats(model_name=model_name))
            stats.total_requests += 1
            stats.estimated_tokens += tokens_used
            stats.last_used = datetime.now().isoformat()
            if success:
                stats.successful_requests += 1
            else:
                stats.failed_requests += 1
            stats.average_response_time = (
                (stats.average_response_time * (stats.total_requests - 1) + response_time)
                / stats.total_requests
            )

        self.logger.info(f"Usage recorded for {model_name}: ~{tokens_used} tokens, {response_time:.2f}s")

    def monitor_call(self, func: Callable) -> Callable:
        """Decorator timing one provider call and recording its outcome"""
        @wraps(func)
        def wrapper(generator: TextGenerator, request: GenerationRequest, credential: Optional[str]) -> str:
            model_name = self._model_name(generator, request)
            start_time = time.time()
            try:
                text = func(generator, request, credential)
            except GenerationError:
                self.record_usage(model_name, self.estimate_tokens(request.prompt),
                                  time.time() - start_time, success=False)
                raise
            self.record_usage(model_name, self.estimate_tokens(request.prompt) + self.estimate_tokens(text),
                              time.time() - start_time)
            return text
        return wrapper

    def generate(self, request: GenerationRequest, credential: Optional[str]) -> str:
        """TextGenerator implementation with fallback on transient failures"""
        call = self.monitor_call(lambda generator, req, cred: generator.generate(req, cred))
        chain = [self.primary] + self.fallback_chain
        last_error: Optional[GenerationError] = None

        for generator in chain:
            try:
                return call(generator, request, credential)
            except GenerationError as e:
                last_error = e
                if e.reason not in self.FALLBACK_REASONS:
                    raise
                self.logger.warning(f"⚠️ {self._model_name(generator, request)} failed ({e.reason}), trying fallback")

        raise last_error

    def get_usage_summary(self) -> Dict[str, Any]:
        """Get usage summary across all models"""
        with self._lock:
            models = {name: asdict(stats) for name, stats in self.usage_stats.items()}

        total = sum(m['total_requests'] for m in models.values())
        successful = sum(m['successful_requests'] for m in models.values())
        return {
            'total_requests': total,
            'estimated_tokens': sum(m['estimated_tokens'] for m in models.values()),
            'success_rate': successful / total if total else 0.0,
            'models': models,
        }
