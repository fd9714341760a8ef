from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from stowqr.services.hex_service import format_for_display, from_hex, to_hex
from stowqr.services.qr_codec_service import decode_payload, is_valid_payload

router = APIRouter(prefix='/codec', tags=['codec'])


class PayloadIn(BaseModel):
    payload: str


class HexIn(BaseModel):
    hex: str


def _describe(payload: str) -> dict:
    decoded = decode_payload(payload)
    return {
        'payload': payload,
        'valid': is_valid_payload(payload),
        'decoded': None
        if decoded is None
        else {'type': decoded.type, 'id': decoded.id, 'name': decoded.name, 'prefix': decoded.prefix},
    }


@router.post('/decode')
def decode(body: PayloadIn) -> dict:
    return _describe(body.payload)


@router.post('/to-hex')
def encode_hex(body: PayloadIn) -> dict:
    try:
        hex_value = to_hex(body.payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {'hex': hex_value, 'display': format_for_display(hex_value)}


@router.post('/from-hex')
def decode_hex(body: HexIn) -> dict:
    payload = from_hex(body.hex)
    if payload is None:
        raise HTTPException(status_code=400, detail='Invalid hex code format')
    return _describe(payload)
