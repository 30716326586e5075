"""
Tests for route configuration loading and validation.
"""

import copy
import logging
import pytest
from pathlib import Path


class TestRouteConfiguration:
    """Tests for RouteConfiguration.from_dict."""

    def test_valid_route(self, route_dict):
        from route_radio.route.config import RouteConfiguration

        route = RouteConfiguration.from_dict(route_dict)
        assert [s.id for s in route.segments] == ['coast', 'valley']
        coast = route.segments[0]
        assert coast.name == 'Coastal Road'
        assert coast.path == ((64.0, -22.0), (64.0, -21.0))
        assert [a.duration for a in coast.audio] == [100.0, 200.0]
        assert len(coast.pool) == 5

    def test_name_defaults_to_id(self, route_dict):
        from route_radio.route.config import RouteConfiguration

        del route_dict['segments'][0]['name']
        route = RouteConfiguration.from_dict(route_dict)
        assert route.segments[0].name == 'coast'

    def test_missing_pool_is_empty(self, route_dict):
        from route_radio.route.config import RouteConfiguration

        del route_dict['segments'][1]['pool']
        route = RouteConfiguration.from_dict(route_dict)
        assert len(route.segments[1].pool) == 0

    @pytest.mark.parametrize("mutate", [
        lambda d: d.update(segments=[]),
        lambda d: d['segments'][0].update(path=[[64.0, -22.0]]),
        lambda d: d['segments'][0].update(path=[[64.0, -22.0], [95.0, -21.0]]),
        lambda d: d['segments'][0].update(path=[[64.0, -22.0], ['north']]),
        lambda d: d['segments'][0].update(audio=[]),
        lambda d: d['segments'][0]['audio'][0].update(duration=0),
        lambda d: d['segments'][0]['audio'][0].update(duration=-5),
        lambda d: d['segments'][0]['audio'][0].update(duration=float('nan')),
        lambda d: d['segments'][0]['audio'][0].pop('url'),
        lambda d: d['segments'][0].update(pool={'videos': 'one.mp4'}),
        lambda d: d['segments'][1].update(id='coast'),
        lambda d: d['segments'][1].pop('id'),
    ], ids=[
        'no-segments', 'single-point-path', 'latitude-out-of-range', 'bad-point',
        'no-audio', 'zero-duration', 'negative-duration', 'nan-duration',
        'audio-without-url', 'pool-not-a-list', 'duplicate-id', 'missing-id',
    ])
    def test_invalid_routes_rejected(self, route_dict, mutate):
        from route_radio.route.config import RouteConfiguration
        from route_radio.interfaces.errors import ConfigurationError

        data = copy.deepcopy(route_dict)
        mutate(data)
        with pytest.raises(ConfigurationError):
            RouteConfiguration.from_dict(data)

    def test_configuration_error_is_value_error(self):
        from route_radio.route.config import RouteConfiguration

        with pytest.raises(ValueError):
            RouteConfiguration.from_dict({'segments': []})


class TestLoadRoute:
    """Tests for load_route / load_route_file."""

    def test_warns_about_empty_pools(self, route_dict, caplog):
        from route_radio.route.config import load_route

        route_dict['segments'][1]['pool'] = {}
        with caplog.at_level(logging.WARNING, logger='route_radio.route.config'):
            load_route(route_dict)
        assert 'valley' in caplog.text

    def test_load_toml_file(self, tmp_path):
        from route_radio.route.config import load_route_file

        route_file = tmp_path / 'route.toml'
        route_file.write_text(
            '[[segments]]\n'
            'id = "only"\n'
            'path = [[64.0, -22.0], [64.0, -21.0]]\n'
            '[[segments.audio]]\n'
            'url = "audio/one.mp3"\n'
            'duration = 60\n'
        )
        route = load_route_file(route_file)
        assert route.segments[0].id == 'only'
        assert route.segments[0].audio[0].duration == 60.0

    def test_invalid_toml(self, tmp_path):
        from route_radio.route.config import load_route_file
        from route_radio.interfaces.errors import ConfigurationError

        route_file = tmp_path / 'route.toml'
        route_file.write_text('[[segments]\nid = ')
        with pytest.raises(ConfigurationError):
            load_route_file(route_file)

    def test_missing_file(self, tmp_path):
        from route_radio.route.config import load_route_file
        from route_radio.interfaces.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            load_route_file(tmp_path / 'nope.toml')

    def test_example_configuration_loads(self):
        from route_radio.route.config import load_route_file

        example = Path(__file__).parent.parent / 'config' / 'route.example.toml'
        route = load_route_file(example)
        assert [s.id for s in route.segments] == ['section_1', 'section_2']
        assert route.segments[0].name == 'Reykjavik to Selfoss'
