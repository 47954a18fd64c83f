from stockflow.config import factorial_config


def test_factorial_config():
    factors = [
        (['model.loader.rate', 'model.dump.rate'], [[1, 2], [3, 4]]),
        (['sim.seed'], [[1], [2], [3]]),
    ]
    configs = list(factorial_config({'sim.duration': '1 h'}, factors))
    assert len(configs) == 6
    assert configs[0] == {
        'sim.duration': '1 h',
        'model.loader.rate': 1,
        'model.dump.rate': 2,
        'sim.seed': 1,
    }
    assert [c['sim.seed'] for c in configs] == [1, 2, 3, 1, 2, 3]
    assert [c['model.dump.rate'] for c in configs] == [2, 2, 2, 4, 4, 4]


def test_factorial_config_special():
    factors = [(['sim.seed'], [[1], [2]])]
    base = {'sim.duration': '1 h'}
    configs = list(factorial_config(base, factors, 'meta.sim.special'))
    assert configs[1]['meta.sim.special'] == [['sim.seed', 2]]
    assert 'meta.sim.special' not in base
