from __future__ import annotations

from typing import Any, Dict

from langchain_community.llms import OCIGenAI

from feedback_desk.core.ports.chat_model import ChatModelPort


GEN_PARAM_KEYS = ("max_tokens", "temperature", "top_p", "top_k", "frequency_penalty", "presence_penalty")


def generation_kwargs(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {k: raw[k] for k in GEN_PARAM_KEYS if raw.get(k) is not None}


class OciChatModel(ChatModelPort):
    """OCI Generative AI text model reached through LangChain."""

    def __init__(
        self,
        model_id: str,
        endpoint: str,
        compartment_id: str,
        auth_file_location: str | None = None,
        auth_profile: str | None = None,
        **gen_kwargs: Any,
    ) -> None:
        if not model_id:
            raise ValueError("OciChatModel requires a model_id")
        kwargs = {}
        if auth_file_location:
            kwargs["auth_file_location"] = auth_file_location
        if auth_profile:
            kwargs["auth_profile"] = auth_profile
        self._llm = OCIGenAI(
            model_id=model_id,
            service_endpoint=endpoint,
            compartment_id=compartment_id,
            **kwargs,
        )
        self._gen_kwargs = generation_kwargs(gen_kwargs)

    def generate(self, prompt: str) -> str:
        return self._llm.invoke(prompt, **self._gen_kwargs).strip()
