from .tag_codec import (
    BatchIndexResolver,
    DecodeResult,
    EncodedRequest,
    LenientTagScanner,
    ResponseDecoder,
    build_dictionary_response,
    decode_entities,
    decode_response,
    encode_batch,
    escape_text,
)

__all__ = [
    "BatchIndexResolver",
    "DecodeResult",
    "EncodedRequest",
    "LenientTagScanner",
    "ResponseDecoder",
    "build_dictionary_response",
    "decode_entities",
    "decode_response",
    "encode_batch",
    "escape_text",
]
