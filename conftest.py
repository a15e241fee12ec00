from netcontrol.random_graphs import random_control_network

# The purpose of this file is to detect tests with `random_network` as input
# and then supply these tests with randomly generated control networks. The
# number of networks can be configured using `--networkcount` and their size
# using `--networksize`.


def pytest_addoption(parser):
    parser.addoption(
        "--networkcount",
        action="store",
        default="8",
        help="Number of random networks used by randomised tests.",
    )
    parser.addoption(
        "--networksize",
        action="store",
        default="30",
        help="Number of nodes of the random networks.",
    )


def pytest_generate_tests(metafunc):
    if "random_network" in metafunc.fixturenames:
        count = int(metafunc.config.getoption("networkcount"))
        size = int(metafunc.config.getoption("networksize"))
        networks = [
            random_control_network(
                size,
                n_sources=max(1, size // 10),
                n_targets=max(1, size // 4),
                seed=seed,
            )
            for seed in range(count)
        ]
        metafunc.parametrize(
            "random_network", networks, ids=[f"seed{s}" for s in range(count)]
        )
