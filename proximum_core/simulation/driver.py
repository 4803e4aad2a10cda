"""
Simulation driver.

Owns all nodes and runs epochs. Each epoch visits every node once in a
freshly shuffled order; for each node it samples measurements, then runs
the EKF step and the least-squares solver independently. Nodes updated
earlier in an epoch are seen with their fresher estimates by later ones.

Recoverable per-node errors are logged, counted as metrics drops, and
skipped; a failure in one estimator never blocks the other.

State machine:
    CREATED -> RUNNING -> COMPLETED (after n_epochs)
"""

import logging
from enum import Enum
from typing import List, Optional
import numpy as np

from proximum_core.errors import ProximumError, RecoverableUpdateError
from proximum_core.localization import geodesy
from proximum_core.localization.extended_kalman_filter import kf_step
from proximum_core.localization.least_squares import (
    MultilaterationSolver,
    MultilaterationSolverConfig,
    solve_against_nodes,
)
from proximum_core.localization.observation_model import NonlinearObservationModel
from proximum_core.localization.state_model import StationaryStateModel
from proximum_core.metrics import MetricsCollector
from proximum_core.proto.measurement import MeasurementSet
from proximum_core.proto.snapshot import SimulationSnapshot
from .config import SimulationConfig
from .node import Node
from .physics import generate_measurements
from .stats import Stats

logger = logging.getLogger(__name__)


class SimulationState(Enum):
    """Run lifecycle."""
    
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


class Simulation:
    """
    One simulation run (an explicit handle owned by the caller).
    
    Usage:
        simulation = Simulation(SimulationConfig(n_nodes=10, n_epochs=5, seed=1))
        simulation.run()
        print(simulation.stats.kf_estimation_rms_error)
        
        # Or incrementally
        snapshot = simulation.run_chunk(10)
    """
    
    def __init__(
        self,
        config: SimulationConfig,
        rng: Optional[np.random.Generator] = None,
        metrics: Optional[MetricsCollector] = None,
        nodes: Optional[List[Node]] = None,
    ):
        """
        Initialize simulation and place nodes.
        
        Args:
            config: Run parameters (validated at construction)
            rng: Random generator (default: seeded from config.seed)
            metrics: Metrics collector (default: a new one)
            nodes: Pre-built nodes (default: placed randomly on the globe);
                node ids must equal their indices
        """
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.metrics = metrics or MetricsCollector()
        
        self.state = SimulationState.CREATED
        self.epoch = 0
        
        self.state_model = StationaryStateModel.from_config(config)
        self.observation_model_generator = NonlinearObservationModel()
        self.ls_solver = MultilaterationSolver(
            MultilaterationSolverConfig.from_simulation_config(config)
        )
        
        if nodes is None:
            nodes = self._create_nodes()
        elif len(nodes) != config.n_nodes:
            raise ProximumError(f"Expected {config.n_nodes} nodes, got {len(nodes)}")
        for i, node in enumerate(nodes):
            if node.id != i:
                raise ProximumError(f"Node id {node.id} does not match its index {i}")
        self.nodes = nodes
        
        self.stats = Stats()
        self.stats.record(self.nodes)
        
        logger.info(f"Simulation created: {config.n_nodes} nodes, {config.n_epochs} epochs")
    
    def _create_nodes(self) -> List[Node]:
        """Place nodes uniformly on the globe with Gaussian-perturbed assertions."""
        config = self.config
        nodes = []
        for i in range(config.n_nodes):
            true_cell = geodesy.random_surface_point(config.h3_resolution, self.rng)
            asserted_cell = geodesy.gaussian_perturbed_neighbor(
                true_cell, config.asserted_position_variance, config.h3_resolution, self.rng
            )
            
            node = Node.create(
                id=i,
                true_cell=true_cell,
                asserted_cell=asserted_cell,
                true_beta=float(self.rng.uniform(config.beta_min, config.beta_max)),
                true_tau=float(self.rng.uniform(config.tau_min, config.tau_max)),
                kf_model_beta=config.kf_model_beta,
                kf_model_tau=config.kf_model_tau,
            )
            logger.debug(f"created node {i} at cell {true_cell}")
            nodes.append(node)
        return nodes
    
    @property
    def is_completed(self) -> bool:
        return self.state == SimulationState.COMPLETED
    
    def run(self) -> SimulationState:
        """Run all remaining epochs; returns COMPLETED."""
        logger.info(f"Running simulation for {self.config.n_epochs - self.epoch} epochs")
        while self.epoch < self.config.n_epochs:
            self.run_epoch()
        self.state = SimulationState.COMPLETED
        return self.state
    
    def run_chunk(self, n_epochs: int) -> SimulationSnapshot:
        """Run up to n_epochs more epochs and return a snapshot."""
        for _ in range(n_epochs):
            if self.epoch >= self.config.n_epochs:
                self.state = SimulationState.COMPLETED
                break
            self.run_epoch()
        return self.snapshot()
    
    def run_epoch(self):
        """
        Run one epoch: shuffle node order, update every node, record stats.
        
        Raises:
            ProximumError: If the run is already completed
        """
        if self.is_completed or self.epoch >= self.config.n_epochs:
            raise ProximumError("Simulation already completed")
        
        self.state = SimulationState.RUNNING
        logger.info(f"Running epoch {self.epoch + 1} of {self.config.n_epochs}")
        
        order = self.rng.permutation(len(self.nodes))
        for index in order:
            self._update_node(int(index))
        
        self.stats.record(self.nodes)
        self.epoch += 1
        self.metrics.increment('epochs')
        
        logger.info(
            f"Finished epoch {self.epoch}: kf_rms={self.stats.kf_estimation_rms_error[-1]:.1f} m, "
            f"ls_rms={self.stats.ls_estimation_rms_error[-1]:.1f} m"
        )
        
        if self.epoch >= self.config.n_epochs:
            self.state = SimulationState.COMPLETED
    
    def _update_node(self, index: int):
        """Sample measurements for one node and run both estimators."""
        node = self.nodes[index]
        self.metrics.increment('node_updates')
        
        try:
            measurements = generate_measurements(
                index,
                node.true_position,
                node.true_beta,
                node.true_tau,
                self.nodes,
                self.config,
                self.rng,
            )
        except RecoverableUpdateError as e:
            self._record_skip(e, index, "measurement")
            return
        
        self._update_kf(index, measurements)
        self._update_ls(index, measurements)
    
    def _update_kf(self, index: int, measurements: MeasurementSet):
        try:
            posterior = kf_step(
                index,
                measurements,
                self.nodes,
                self.observation_model_generator,
                self.state_model,
                self.config.kf_model_tof_observation_variance,
            )
        except RecoverableUpdateError as e:
            self._record_skip(e, index, "EKF")
            return
        
        self.nodes[index].apply_kf_posterior(posterior)
        self.metrics.increment('kf_updates')
    
    def _update_ls(self, index: int, measurements: MeasurementSet):
        node = self.nodes[index]
        try:
            result = solve_against_nodes(
                self.ls_solver,
                node.ls_estimated_position,
                node.asserted_position,
                measurements,
                self.nodes,
            )
        except RecoverableUpdateError as e:
            self._record_skip(e, index, "LS")
            return
        
        node.apply_ls_estimate(result.position)
        self.metrics.increment('ls_updates')
        self.metrics.record_histogram('ls_iterations', result.iterations)
        self.metrics.record_histogram('ls_residual_rms_s', result.residual_rms_s)
    
    def _record_skip(self, error: RecoverableUpdateError, index: int, stage: str):
        error.with_context(index, self.epoch)
        logger.warning(f"Skipping {stage} update: {error}")
        self.metrics.increment_drop(error.drop_reason)
    
    def snapshot(self) -> SimulationSnapshot:
        """Immutable view of the current run."""
        return SimulationSnapshot(
            epoch=self.epoch,
            state=self.state.value,
            config=self.config.to_dict(),
            nodes=tuple(node.snapshot() for node in self.nodes),
            stats=self.stats.snapshot(),
        )
