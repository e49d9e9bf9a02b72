"""
Transfer Module - Peer-to-Peer Chunked File Transfer

Envelope framing, peer channels and the sender/receiver sessions.
"""

from .protocol import (
    EnvelopeType, MetadataEnvelope, ChunkEnvelope, CompleteEnvelope,
    TransferEnvelope, encode_envelope, decode_envelope, read_envelope, read_frame,
)
from .channel import Channel, StreamChannel, LoopbackChannel, connect_to_peer, parse_peer_id
from .sender import TransferSession, SessionState, progress_percent
from .receiver import ReceiveSession, ReceivePhase, ReassemblyBuffer, ReceivedFile

__all__ = [
    'EnvelopeType',
    'MetadataEnvelope',
    'ChunkEnvelope',
    'CompleteEnvelope',
    'TransferEnvelope',
    'encode_envelope',
    'decode_envelope',
    'read_envelope',
    'read_frame',
    'Channel',
    'StreamChannel',
    'LoopbackChannel',
    'connect_to_peer',
    'parse_peer_id',
    'TransferSession',
    'SessionState',
    'progress_percent',
    'ReceiveSession',
    'ReceivePhase',
    'ReassemblyBuffer',
    'ReceivedFile',
]
