from __future__ import annotations

from fastapi import APIRouter, HTTPException, Path, status

from panelvoice.models.schemas import (
    CharacterCreate,
    CharacterRecord,
    CharacterUpdate,
    UserProfile,
    VoicePreference,
)
from panelvoice.services.speaker import CharacterRegistry
from panelvoice.services.store import profile_store

router = APIRouter()


def _save_registry(user_id: str, profile: UserProfile, registry: CharacterRegistry) -> None:
    profile.characters = registry.records
    profile_store.set(user_id, profile)


@router.get("/{user_id}", response_model=UserProfile)
def get_profile(user_id: str) -> UserProfile:
    return profile_store.get(user_id)


@router.get("/{user_id}/characters", response_model=dict[str, CharacterRecord])
def list_characters(user_id: str) -> dict[str, CharacterRecord]:
    return profile_store.get(user_id).characters


@router.post("/{user_id}/characters", status_code=status.HTTP_201_CREATED)
def add_character(user_id: str, payload: CharacterCreate) -> dict[str, str]:
    with profile_store.lock(user_id):
        profile = profile_store.get(user_id)
        registry = CharacterRegistry(profile.characters)
        if not registry.add_character(payload.name, voice_index=payload.voice_index):
            raise HTTPException(status_code=409, detail="Character already exists")
        _save_registry(user_id, profile, registry)
    return {"status": "ok"}


@router.patch("/{user_id}/characters/{name}")
def update_character(
    user_id: str,
    name: str = Path(..., description="Character name as attributed"),
    payload: CharacterUpdate | None = None,
) -> dict[str, str]:
    if payload is None or payload.voice_index is None:
        raise HTTPException(status_code=400, detail="Missing payload")
    with profile_store.lock(user_id):
        profile = profile_store.get(user_id)
        registry = CharacterRegistry(profile.characters)
        if not registry.update_voice_index(name, payload.voice_index):
            raise HTTPException(status_code=404, detail="Character not found")
        _save_registry(user_id, profile, registry)
    return {"status": "ok"}


@router.delete("/{user_id}/characters/{name}")
def remove_character(user_id: str, name: str) -> dict[str, str]:
    with profile_store.lock(user_id):
        profile = profile_store.get(user_id)
        registry = CharacterRegistry(profile.characters)
        if not registry.remove_character(name):
            raise HTTPException(status_code=404, detail="Character not found")
        _save_registry(user_id, profile, registry)
    return {"status": "ok"}


@router.put("/{user_id}/voices/{speaker}", response_model=UserProfile)
def set_voice_preference(user_id: str, speaker: str, payload: VoicePreference) -> UserProfile:
    with profile_store.lock(user_id):
        profile = profile_store.get(user_id)
        profile.voice_preferences[speaker] = payload
        return profile_store.set(user_id, profile)


@router.put("/{user_id}/default-voice", response_model=UserProfile)
def set_default_voice(user_id: str, payload: VoicePreference) -> UserProfile:
    with profile_store.lock(user_id):
        profile = profile_store.get(user_id)
        profile.default_voice = payload
        return profile_store.set(user_id, profile)
