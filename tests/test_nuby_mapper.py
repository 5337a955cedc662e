import pytest

from commerce_hooks.services.nuby_mapper import (
    filter_properties,
    format_price,
    format_property_features,
    map_property,
)

BASE_URL = "https://acme.arrendasoft.co"


def nuby_property(**overrides):
    data = {
        "codigo": "1042",
        "titulo": "Apartamento en Chapinero",
        "tipo_servicio_id": "arriendo",
        "clase_inmueble": "Apartamento",
        "estado": "1",
        "valor_arriendo1": "2500000",
        "valor_venta1": "0",
        "valor_administracion": "",
        "pais": "Colombia",
        "departamento": "Cundinamarca",
        "municipio": "Bogotá",
        "barrio": "Chapinero",
        "direccion": "Cra 7 # 60-20",
        "coordenadas": "4.6486:-74.0628",
        "area": "72.5",
        "estrato_texto": "Estrato 4",
        "observaciones": None,
        "propiedad_destacada": "Si",
        "caracteristicas": [
            {"id": "1", "descripcion": "Habitaciones", "tipo_campo": "numeric", "grupo": "G", "valor": "3"},
            {"id": "2", "descripcion": "Baños", "tipo_campo": "numeric", "grupo": "G", "valor": "2"},
            {"id": "3", "descripcion": "Parqueadero cubierto", "tipo_campo": "numeric", "grupo": "G", "valor": "1"},
            {"id": "4", "descripcion": "Piso", "tipo_campo": "numeric", "grupo": "G", "valor": "8"},
        ],
        "imagenes": [
            {"posicion": "1", "size": "big", "imagen": "uploads/fachada.jpg"},
            {"posicion": "2", "size": "big", "imagen": "https://cdn.test/sala.jpg"},
        ],
        "videos": [{"url": "yt123", "tipo": "youtube", "descripcion": None, "posicion": "1"}],
        "propietarios": [{"id": "9", "documento": "1010", "nombres": "Laura", "apellidos": "Gómez"}],
    }
    data.update(overrides)
    return data


def test_map_property_core_fields():
    row = map_property(nuby_property(), "org-1", BASE_URL)

    assert row["organization_id"] == "org-1"
    assert row["external_id"] == "1042"
    assert row["description"] == ""
    assert row["status"] == "active"
    assert row["price_rent"] == 2500000.0
    assert row["price_sale"] is None
    assert row["price_admin"] is None
    assert row["area_m2"] == 72.5
    assert row["coordinates"] == "4.6486,-74.0628"
    assert row["is_featured"] is True
    assert row["external_data"]["codigo"] == "1042"
    assert row["synced_at"] is not None


def test_map_property_features_images_and_owners():
    row = map_property(nuby_property(), "org-1", BASE_URL)

    assert (row["bedrooms"], row["bathrooms"], row["parking_spots"], row["floor_number"]) == (3, 2, 1, 8)
    assert row["age_years"] is None
    assert row["images"][0] == {"position": 1, "url": f"{BASE_URL}/uploads/fachada.jpg", "size": "big"}
    assert row["images"][1]["url"] == "https://cdn.test/sala.jpg"
    assert row["videos"] == [{"position": 1, "url": "yt123", "type": "youtube", "description": None}]
    assert row["owners"] == [{"id": "9", "document": "1010", "name": "Laura Gómez"}]
    assert row["features"][0]["description"] == "Habitaciones"


@pytest.mark.parametrize("coordinates", ["", "4.6:0", "0:-74.1", "garbage"])
def test_missing_coordinates_are_null(coordinates):
    assert map_property(nuby_property(coordenadas=coordinates), "o", BASE_URL)["coordinates"] is None


@pytest.mark.parametrize(
    "estado, expected",
    [("0", "inactive"), ("false", "inactive"), ("Inactivo", "inactive"), ("DESHABILITADO", "inactive"),
     ("1", "active"), ("Disponible", "active"), (None, "active")],
)
def test_status_mapping(estado, expected):
    assert map_property(nuby_property(estado=estado), "o", BASE_URL)["status"] == expected


def test_filter_properties():
    rent = {"property_type": "arriendo", "city": "Bogotá", "price_rent": 2_000_000, "bedrooms": 3, "area_m2": 80}
    sale = {"property_type": "venta", "city": "Medellín", "price_sale": 300_000_000, "bedrooms": 2, "area_m2": 60}
    props = [rent, sale]

    assert filter_properties(props, city="bogotá") == [rent]
    assert filter_properties(props, max_price=5_000_000) == [rent]
    assert filter_properties(props, min_price=100_000_000) == [sale]
    assert filter_properties(props, bedrooms=2) == [sale]
    assert filter_properties(props, min_area=70) == [rent]
    assert filter_properties(props, property_type="venta") == [sale]
    assert filter_properties(props) == props


def test_format_helpers():
    assert format_price(2500000) == "$ 2.500.000"
    assert format_property_features({"bedrooms": 3, "bathrooms": 2, "area_m2": 80.0, "parking_spots": 1}) == (
        "3 hab • 2 baños • 80 m² • 1 parq"
    )
    assert format_property_features({"bedrooms": 1}) == "1 hab"


def test_numbers_are_read_from_their_leading_digits():
    row = map_property(
        nuby_property(
            area="120.5 m2",
            valor_arriendo1=" 1800000 COP",
            caracteristicas=[{"id": "1", "descripcion": "Habitaciones", "valor": "3 hab"}],
            imagenes=[{"posicion": "2a", "size": "big", "imagen": "uploads/a.jpg"}],
        ),
        "org-1",
        BASE_URL,
    )

    assert row["area_m2"] == 120.5
    assert row["price_rent"] == 1800000.0
    assert row["bedrooms"] == 3
    assert row["images"][0]["position"] == 2


@pytest.mark.parametrize("value", ["NaN", "nan", "inf", "sin dato", float("nan")])
def test_non_numbers_become_null(value):
    row = map_property(nuby_property(area=value, valor_arriendo1=value), "org-1", BASE_URL)
    assert row["area_m2"] is None
    assert row["price_rent"] is None
