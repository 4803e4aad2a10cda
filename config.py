"""
Simulation runner configuration.
"""

# Simulation defaults (SI units: m, s, fraction of c, variances)
SIMULATION_CONFIG = {
    "n_nodes": 100,
    "n_epochs": 100,
    "n_measurements": 10,
    "h3_resolution": 7,
    "asserted_position_variance": 1_000_000.0 ** 2,   # 1000 km std
    "beta_min": 0.2,
    "beta_max": 0.8,
    "beta_variance": 0.001 ** 2,
    "tau_min": 0.002,                                  # 2 ms
    "tau_max": 0.030,                                  # 30 ms
    "tau_variance": 0.001 ** 2,                        # 1 ms std
    "message_distance_max": 13_000_000.0,              # 13000 km
    "ls_model_beta": 0.5,
    "ls_model_tau": 0.015,
    "ls_tolerance": 1.0,                               # m
    "ls_iterations": 1,
    "kf_model_position_variance": 10_000.0 ** 2,       # 10 km std
    "kf_model_beta": 0.5,
    "kf_model_beta_variance": 0.001 ** 2,
    "kf_model_tau": 0.015,
    "kf_model_tau_variance": 0.00001 ** 2,             # 0.01 ms std
    "kf_model_tof_observation_variance": 0.001 ** 2,   # 1 ms std
    "seed": None,
}

# Output options
OUTPUT_CONFIG = {
    "print_interval": 10,             # print stats every N epochs
    "json_indent": 2,
}

# Logging options
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
