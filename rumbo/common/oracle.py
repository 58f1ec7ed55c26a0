"""
AI Oracle Port

The large-language-model service is modelled as a plain callable taking an
`OracleRequest` and returning the raw text answer. Pipeline code only depends
on that signature so tests can pass a stub; `GeminiOracle` is the production
implementation backed by Google Gemini.
"""
import json
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import google.generativeai as genai

from rumbo.common.config import DEFAULT_GEMINI_MODEL
from rumbo.common.logging_config import get_logger
from rumbo.common.exceptions import OracleMalformedError, OracleUnavailableError

logger = get_logger(__name__)


@dataclass
class OracleRequest:
    prompt: str
    images: List[bytes] = field(default_factory=list)
    system: Optional[str] = None
    temperature: float = 0.3
    max_output_tokens: int = 1000
    image_mime_type: str = 'image/png'


Oracle = Callable[[OracleRequest], str]


class GeminiOracle:
    """
    Oracle implementation using the Gemini API.

    Text and page images are sent together in a single multimodal request.
    No retries: a failed call surfaces immediately as OracleUnavailableError.
    """

    def __init__(self, api_key: Optional[str] = None, model_name: str = DEFAULT_GEMINI_MODEL):
        if not api_key:
            api_key = os.getenv('GEMINI_API_KEY')

        if not api_key:
            raise OracleUnavailableError("Error de configuración: API key de Gemini no configurada")

        genai.configure(api_key=api_key)
        self.model_name = model_name

    def __call__(self, request: OracleRequest) -> str:
        parts = [request.prompt]
        for image in request.images:
            parts.append({'mime_type': request.image_mime_type, 'data': image})

        try:
            model = genai.GenerativeModel(self.model_name, system_instruction=request.system)
            response = model.generate_content(
                parts,
                generation_config={
                    'temperature': request.temperature,
                    'max_output_tokens': request.max_output_tokens,
                },
            )
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or has no text part
            raise OracleMalformedError(f"Respuesta vacía o bloqueada del modelo: {e}") from e
        except Exception as e:
            logger.error(f"Gemini request failed: {e}", exc_info=True, model=self.model_name)
            raise OracleUnavailableError(f"No se pudo contactar el modelo: {e}") from e

        if not text or not text.strip():
            raise OracleMalformedError("No se recibió respuesta del modelo")

        logger.debug("Oracle answered.", model=self.model_name, images=len(request.images), chars=len(text))
        return text


def extract_json_block(text: str, opener: str = '{') -> Optional[str]:
    """
    Returns the first balanced JSON object (opener='{') or array (opener='[')
    found in `text`, ignoring brackets inside string literals. Markdown fences
    and surrounding prose are thereby skipped. Returns None when no balanced
    block exists.
    """
    closer = '}' if opener == '{' else ']'
    start = text.find(opener)

    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this opener; try the next one
        start = text.find(opener, start + 1)

    return None


def parse_json_block(text: str, opener: str = '{'):
    """
    Extracts and decodes the first balanced block.
    Raises OracleMalformedError when there is none or it is not valid JSON.
    """
    block = extract_json_block(text, opener)
    if block is None:
        raise OracleMalformedError("No se pudo extraer JSON de la respuesta", sample_text=text)
    try:
        return json.loads(block)
    except json.JSONDecodeError as e:
        raise OracleMalformedError(f"JSON inválido en la respuesta: {e}", sample_text=block) from e
