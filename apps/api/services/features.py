"""Feature classes, credit costs, and request-shape classification."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple


class FeatureType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TRY_ON = "tryOn"
    AVATAR = "avatar"
    VIDEO = "video"


FEATURE_COSTS: Dict[FeatureType, int] = {
    FeatureType.TEXT: 1,
    FeatureType.IMAGE: 5,
    FeatureType.TRY_ON: 8,
    FeatureType.AVATAR: 10,
    FeatureType.VIDEO: 40,
}

IMAGE_ROLES = ("subject", "garment", "style")

_AVATAR_HINT = re.compile(r"\bavatar\b", re.IGNORECASE)


def cost_of(feature_type: FeatureType) -> int:
    return FEATURE_COSTS[FeatureType(feature_type)]


@dataclass(frozen=True)
class RequestShape:
    """The only request properties that decide the cost bucket."""

    endpoint: str
    has_reference_images: bool = False
    avatar_hint: bool = False


@dataclass(frozen=True)
class ReferenceImage:
    data: str
    mime_type: str
    role: Optional[str] = None
    label: Optional[str] = None


def has_avatar_hint(prompt: Optional[str], explicit: bool = False) -> bool:
    return bool(explicit) or bool(_AVATAR_HINT.search(prompt or ""))


def request_shape(
    endpoint: str,
    prompt: Optional[str],
    images: Sequence[ReferenceImage] = (),
    avatar: bool = False,
) -> RequestShape:
    return RequestShape(
        endpoint=endpoint,
        has_reference_images=len(images) > 0,
        avatar_hint=has_avatar_hint(prompt, avatar),
    )


def classify_feature(shape: RequestShape) -> FeatureType:
    """
    Map a request shape to its cost bucket.

    text endpoint -> text, video endpoint -> video. On the image endpoint an
    avatar hint wins over reference images (avatar > tryOn > image).
    """
    if shape.endpoint == "text":
        return FeatureType.TEXT
    if shape.endpoint == "video":
        return FeatureType.VIDEO
    if shape.endpoint == "image":
        if shape.avatar_hint:
            return FeatureType.AVATAR
        if shape.has_reference_images:
            return FeatureType.TRY_ON
        return FeatureType.IMAGE
    raise ValueError(f"Unknown generation endpoint: {shape.endpoint}")


@dataclass
class ComposedRequest:
    prompt: str
    images: List[ReferenceImage] = field(default_factory=list)


def _ordered_by_role(images: Sequence[ReferenceImage]) -> List[Tuple[str, ReferenceImage]]:
    subjects = [("subject", img) for img in images if img.role == "subject"]
    garments = [("garment", img) for img in images if img.role in ("garment", None)]
    styles = [("style", img) for img in images if img.role == "style"]
    return subjects[:1] + garments + styles


def compose_tryon_instruction(prompt: str, images: Sequence[ReferenceImage]) -> ComposedRequest:
    """
    Order reference images by role and build the structured instruction block.

    When no image carries a role, images and prompt pass through untouched.
    Otherwise role-less images count as garments and only the first subject
    photo is kept.
    """
    if not images or not any(img.role for img in images):
        return ComposedRequest(prompt=prompt, images=list(images))

    ordered = _ordered_by_role(images)
    has_subject = bool(ordered) and ordered[0][0] == "subject"

    lines = ["TASK: HYPER-REALISTIC VIRTUAL TRY-ON COMPOSITION.", "INPUTS:"]
    garment_number = 0
    for index, (role, img) in enumerate(ordered, start=1):
        if role == "subject":
            lines.append(
                f"- IMAGE {index}: THE CLIENT (identity lock). Preserve facial identity, "
                "skin tone, hair, body shape and pose exactly."
            )
        elif role == "garment":
            garment_number += 1
            name = f' ("{img.label}")' if img.label else ""
            lines.append(f"- IMAGE {index}: GARMENT {garment_number}{name}. Apply this item to the client.")
        else:
            lines.append(f"- IMAGE {index}: STYLE HINT. Use only for mood, lighting and styling cues.")

    lines.append("INSTRUCTIONS:")
    lines.append("1. Generate A SINGLE final image combining ALL provided garments at once. Do NOT return separate images.")
    if has_subject:
        lines.append("2. IDENTITY: The person in the result must be the client from IMAGE 1, unaltered.")
    else:
        lines.append("2. MODEL: Present the garments on a neutral, realistic model.")
    if garment_number:
        lines.append(
            "3. FIDELITY: Keep the EXACT texture, print, color and material of every garment. "
            "Do not recolor, restyle or simplify them; only adapt the fit to the body and pose."
        )
    lines.append("4. LIGHTING: Match garment lighting to the client's original environment.")
    if prompt and prompt.strip():
        lines.append(f"ADDITIONAL DIRECTIONS: {prompt.strip()}")

    return ComposedRequest(prompt="\n".join(lines), images=[img for _, img in ordered])
