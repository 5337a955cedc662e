"""
Map Nuby property payloads onto local ``properties`` rows.
"""

import math
import re
from datetime import datetime
from typing import Optional

INACTIVE_STATES = {"0", "false", "inactivo", "inactive", "deshabilitado"}

FEATURE_KEYWORDS = {
    "bedrooms": ("habitaciones",),
    "bathrooms": ("baños",),
    "floor_number": ("piso",),
    "age_years": ("antigüedad",),
    "parking_spots": ("garaje", "parqueadero"),
}


# Leading numeric prefix, so "3 hab" reads as 3 and "120.5 m2" as 120.5
_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def _to_float(value) -> Optional[float]:
    """Parse a vendor number; zero, empty, NaN and garbage all become None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _FLOAT_PREFIX.match(str(value))
        if match is None:
            return None
        number = float(match.group(1))
    if not math.isfinite(number) or number == 0:
        return None
    return number


def _to_int(value) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, int):
        return value
    match = _INT_PREFIX.match(str(value))
    return int(match.group(1)) if match else None


def _coordinates(raw: Optional[str]) -> Optional[str]:
    parts = (raw or "").split(":")
    if len(parts) < 2:
        return None
    lat, lng = _to_float(parts[0]), _to_float(parts[1])
    if not lat or not lng:
        return None
    return f"{lat},{lng}"


def _feature_value(features: list, keywords: tuple) -> Optional[int]:
    for feature in features:
        description = (feature.get("descripcion") or "").lower()
        if any(keyword in description for keyword in keywords):
            value = feature.get("valor")
            return _to_int(value) if value else None
    return None


def _is_inactive(status) -> bool:
    return str(status if status is not None else "").strip().lower() in INACTIVE_STATES


def _image_url(path: str, base_url: str) -> str:
    if not path or path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base_url}{path}"


def map_property(nuby: dict, organization_id: str, base_url: str) -> dict:
    features = nuby.get("caracteristicas") or []
    code = nuby.get("codigo")

    mapped = {
        "organization_id": organization_id,
        "external_id": code,
        "external_code": code,
        "external_url": base_url,
        "title": nuby.get("titulo"),
        "description": nuby.get("observaciones") or "",
        "property_type": nuby.get("tipo_servicio_id"),
        "property_class": nuby.get("clase_inmueble"),
        "status": "inactive" if _is_inactive(nuby.get("estado")) else "active",
        "price_rent": _to_float(nuby.get("valor_arriendo1")),
        "price_sale": _to_float(nuby.get("valor_venta1")),
        "price_admin": _to_float(nuby.get("valor_administracion")),
        "country": nuby.get("pais"),
        "department": nuby.get("departamento"),
        "city": nuby.get("municipio"),
        "neighborhood": nuby.get("barrio"),
        "address": nuby.get("direccion"),
        "coordinates": _coordinates(nuby.get("coordenadas")),
        "area_m2": _to_float(nuby.get("area")),
        "stratum": nuby.get("estrato_texto"),
        "features": [
            {
                "id": f.get("id"),
                "description": f.get("descripcion"),
                "type": f.get("tipo_campo"),
                "group": f.get("grupo"),
                "value": f.get("valor"),
                "valueText": f.get("valor_texto"),
            }
            for f in features
        ],
        "images": [
            {
                "position": _to_int(img.get("posicion")),
                "url": _image_url(img.get("imagen") or "", base_url),
                "size": img.get("size"),
            }
            for img in nuby.get("imagenes") or []
        ],
        "videos": [
            {
                "position": _to_int(v.get("posicion")),
                "url": v.get("url"),
                "type": v.get("tipo"),
                "description": v.get("descripcion"),
            }
            for v in nuby.get("videos") or []
        ],
        "owners": [
            {
                "id": o.get("id"),
                "document": o.get("documento"),
                "name": f"{o.get('nombres') or ''} {o.get('apellidos') or ''}".strip(),
            }
            for o in nuby.get("propietarios") or []
        ],
        "is_featured": nuby.get("propiedad_destacada") == "Si",
        "external_data": nuby,
        "synced_at": datetime.utcnow(),
    }
    for column, keywords in FEATURE_KEYWORDS.items():
        mapped[column] = _feature_value(features, keywords)
    return mapped


def filter_properties(
    properties: list,
    property_type: Optional[str] = None,
    city: Optional[str] = None,
    neighborhood: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    bedrooms: Optional[int] = None,
    bathrooms: Optional[int] = None,
    min_area: Optional[float] = None,
) -> list:
    """Filter mapped property dicts. Rentals are priced by rent, everything else by sale price."""

    def matches(p: dict) -> bool:
        if property_type and property_type not in (p.get("property_type") or ""):
            return False
        if city and (p.get("city") or "").lower() != city.lower():
            return False
        if neighborhood and (p.get("neighborhood") or "").lower() != neighborhood.lower():
            return False

        price = p.get("price_rent") if p.get("property_type") == "arriendo" else p.get("price_sale")
        if min_price and (not price or price < min_price):
            return False
        if max_price and (not price or price > max_price):
            return False

        if bedrooms and p.get("bedrooms") != bedrooms:
            return False
        if bathrooms and p.get("bathrooms") != bathrooms:
            return False
        if min_area and (not p.get("area_m2") or p["area_m2"] < min_area):
            return False
        return True

    return [p for p in properties if matches(p)]


def format_price(price: float) -> str:
    """COP without decimals, e.g. ``$ 1.500.000``."""
    return "$ " + f"{round(price):,}".replace(",", ".")


def _number(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def format_property_features(p: dict) -> str:
    parts = []
    if p.get("bedrooms"):
        parts.append(f"{p['bedrooms']} hab")
    if p.get("bathrooms"):
        parts.append(f"{p['bathrooms']} baños")
    if p.get("area_m2"):
        parts.append(f"{_number(p['area_m2'])} m²")
    if p.get("parking_spots"):
        parts.append(f"{p['parking_spots']} parq")
    return " • ".join(parts)
