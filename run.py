#!/usr/bin/env python
"""factory_optimizer 啟動程式

執行 python run.py 以代理模擬器跑一次示範優化；加上 --remote 改用
獨立行程的模擬器。

範例:
    python run.py ga --generations 10
    python run.py ga --runs 5 --seed 1
    python run.py phase2 --config config.json
    python run.py bayesian --iterations 60 --memory data/memory.db
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

from factory_optimizer.bayesian import (
    BayesianConfig,
    BayesianOptimizer,
    DemandContext,
    StrategyPolicyEvaluator,
)
from factory_optimizer.db import EvaluationMemory
from factory_optimizer.evolution import (
    Constraints,
    FitnessEvaluator,
    GeneticAlgorithmOptimizer,
    LoggingEventSink,
    MultiRunConfig,
    MultiRunOptimizer,
    OptimizerConfig,
    Phase2Refiner,
    ProgressEvent,
    RefinementConfig,
    Strategy,
)
from factory_optimizer.simulation import RemoteFitnessEvaluator, SurrogateFactoryEvaluator


logger = logging.getLogger("factory_optimizer.run")


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """讀取 JSON 設定檔

    檔案可包含 optimizer、refinement、bayesian、strategy、constraints 區段。
    """
    if path is None:
        return {}
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def build_evaluator(args: argparse.Namespace) -> FitnessEvaluator:
    if args.remote:
        logger.info(f"Using remote simulator at {args.remote}")
        return RemoteFitnessEvaluator(args.remote)
    return SurrogateFactoryEvaluator()


def print_progress(event: ProgressEvent) -> None:
    print(f"  [{event.current}/{event.total}] best fitness: {event.best_fitness_so_far:,.2f}")


def run_genetic(args: argparse.Namespace, config: Dict[str, Any], evaluator: FitnessEvaluator):
    optimizer_config = OptimizerConfig.from_dict(config.get("optimizer", {}))
    if args.generations is not None:
        optimizer_config.generations = args.generations
    if args.seed is not None:
        optimizer_config.random_seed = args.seed

    base = Strategy.from_dict(config.get("strategy", {}))
    constraints = Constraints.from_dict(config["constraints"]) if "constraints" in config else None
    if args.runs > 1:
        multi_config = MultiRunConfig(args.runs, optimizer_config, base_seed=optimizer_config.random_seed)
        multi = MultiRunOptimizer(evaluator, multi_config).optimize(
            base,
            constraints,
            progress_callback=print_progress,
        )
        stats = multi.fitness_stats
        print(
            f"\n{len(multi.runs)} runs: best {multi.best_fitness:,.2f} (run {multi.best_run_index + 1}), "
            f"mean {stats.mean:,.2f} +/- {stats.std_dev:,.2f}"
        )
        return base, constraints, multi.runs[multi.best_run_index]

    optimizer = GeneticAlgorithmOptimizer(evaluator, optimizer_config)
    result = optimizer.optimize(
        base,
        constraints,
        progress_callback=print_progress,
        event_sink=LoggingEventSink(),
    )
    return base, constraints, result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Factory strategy optimizer")
    parser.add_argument("mode", choices=["ga", "phase2", "bayesian"], help="optimization mode")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--remote", help="base URL of an out-of-process simulator")
    parser.add_argument("--generations", type=int, help="override the generation budget")
    parser.add_argument("--runs", type=int, default=1, help="independent genetic runs with consecutive seeds")
    parser.add_argument("--iterations", type=int, help="Bayesian iteration budget")
    parser.add_argument("--memory", help="SQLite file for Bayesian evaluation memory")
    parser.add_argument("--seed", type=int, help="random seed")
    parser.add_argument("--output", help="write the best strategy or policy as JSON")
    parser.add_argument("--log-level", default="INFO", help="logging level")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 50)
    print("  Factory Strategy Optimizer")
    print("=" * 50)

    config = load_config(args.config)
    evaluator = build_evaluator(args)
    output: Dict[str, Any]

    if args.mode in ("ga", "phase2"):
        base, constraints, result = run_genetic(args, config, evaluator)
        print(f"\nPhase 1 best fitness: {result.best_fitness:,.2f} after {result.generations_run} generations")
        output = result.best_strategy.to_dict()

        if args.mode == "phase2":
            refinement_config = RefinementConfig(**config.get("refinement", {}))
            if args.seed is not None:
                refinement_config.random_seed = args.seed
            refiner = Phase2Refiner(evaluator, refinement_config)
            top = refiner.refine(
                result.final_population,
                base_strategy=base,
                constraints=constraints,
                progress_callback=print_progress,
            )
            print("\nPhase 2 top candidates (net worth growth per day):")
            for candidate in top:
                print(f"  {candidate.id}: {candidate.growth_rate}")
            output = top[0].to_strategy(base).to_dict()
    else:
        base = Strategy.from_dict(config.get("strategy", {}))
        settings = {"use_memory": args.memory is not None, "random_seed": args.seed}
        settings.update(config.get("bayesian", {}))
        bayesian_config = BayesianConfig(demand_context=DemandContext.from_strategy(base), **settings)
        if args.iterations is not None:
            bayesian_config.total_iterations = args.iterations
            bayesian_config.random_exploration = min(bayesian_config.random_exploration, args.iterations)
        memory = EvaluationMemory(args.memory) if args.memory else None
        optimizer = BayesianOptimizer(StrategyPolicyEvaluator(evaluator, base), memory)
        result = optimizer.optimize(bayesian_config, progress_callback=print_progress)
        print(
            f"\nBest fitness: {result.best_fitness:,.2f} "
            f"({result.iterations} iterations, {result.warm_started} warm start, {result.duration:.1f}s)"
        )
        output = result.best_policy.to_dict()

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(output, f, ensure_ascii=False, indent=2)
        print(f"Saved result to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
