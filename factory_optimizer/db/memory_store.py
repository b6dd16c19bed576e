"""Evaluation Memory for Bayesian Warm Starts

This module provides the EvaluationMemory class, which persists the best
policy of each optimization run in SQLite and answers "what worked before
under these demand conditions" queries.
"""

import json
import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from factory_optimizer.bayesian.policy import DemandContext, PolicyParameters
from factory_optimizer.db.schema import get_memory_schema_statements

logger = logging.getLogger(__name__)

SIM_VERSION = "1.0.0"

# 記錄數超過此值後才啟用品質門檻
QUALITY_GATE_MIN_RECORDS = 5
QUALITY_GATE_RATIO = 0.8

DEFAULT_SIMILARITY_THRESHOLD = 0.95


@dataclass
class MemoryEvaluation:
    """單次優化的記憶紀錄"""
    run_id: str
    policy: PolicyParameters
    fitness: float
    net_worth: float
    demand_context: DemandContext
    total_iterations: int
    sim_version: str
    created_at: str = ""


@dataclass
class MemoryContextStats:
    """需求情境查詢結果

    Attributes:
        count: 符合情境的紀錄數
        average_fitness: 平均適應度
        top_fitness: 最佳適應度
        top_policies: 依適應度排序的政策
    """
    count: int = 0
    average_fitness: float = 0.0
    top_fitness: float = 0.0
    top_policies: List[PolicyParameters] = field(default_factory=list)


@dataclass
class MemoryStats:
    """記憶庫整體統計"""
    total_runs: int = 0
    average_fitness: float = 0.0
    top_fitness: float = 0.0
    last_updated: Optional[str] = None


class EvaluationMemory:
    """Evaluation Memory

    使用 SQLite 保存歷次貝氏優化的最佳政策，支援：
    - 品質門檻：記錄數超過 5 筆後，低於平均 80% 的結果不予保存
    - 需求情境比對：只回傳相似度達門檻的紀錄
    - 版本隔離：不同模擬器版本的紀錄一律忽略

    Attributes:
        db_path: SQLite 資料庫檔案路徑
        sim_version: 目前的模擬器版本
    """

    def __init__(self, db_path: Optional[str] = None, sim_version: str = SIM_VERSION):
        """初始化 EvaluationMemory

        Args:
            db_path: SQLite 資料庫路徑，預設為 data/memory.db
            sim_version: 模擬器版本
        """
        if db_path is None:
            project_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
            data_dir = os.path.join(project_dir, "data")
            os.makedirs(data_dir, exist_ok=True)
            db_path = os.path.join(data_dir, "memory.db")

        self.db_path = db_path
        self.sim_version = sim_version
        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """取得資料庫連線"""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_schema(self) -> None:
        """初始化資料庫結構"""
        with self._get_connection() as conn:
            for statement in get_memory_schema_statements():
                conn.executescript(statement)
            conn.commit()
        logger.info(f"Memory database initialized at {self.db_path}")

    # ==================== 寫入 ====================

    def add_evaluation(
        self,
        policy: PolicyParameters,
        fitness: float,
        net_worth: float,
        demand_context: DemandContext,
        total_iterations: int,
    ) -> bool:
        """新增一筆評估紀錄（經品質門檻）

        Args:
            policy: 政策參數
            fitness: 適應度
            net_worth: 淨值
            demand_context: 需求情境
            total_iterations: 該次優化的迭代數

        Returns:
            是否已保存
        """
        stats = self.stats()
        if stats.total_runs > QUALITY_GATE_MIN_RECORDS:
            threshold = stats.average_fitness * QUALITY_GATE_RATIO
            if fitness < threshold:
                logger.info(f"Evaluation below quality threshold ({fitness:.2f} < {threshold:.2f}), not saving")
                return False

        context = demand_context.to_dict()
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO memory_evaluations
                    (run_id, policy, fitness, net_worth,
                     custom_demand_mean_1, custom_demand_std_dev_1,
                     custom_demand_mean_2, custom_demand_std_dev_2,
                     standard_demand_intercept, standard_demand_slope,
                     total_iterations, sim_version)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        f"run-{uuid.uuid4().hex[:12]}",
                        json.dumps(policy.to_dict()),
                        fitness,
                        net_worth,
                        context["custom_demand_mean_1"],
                        context["custom_demand_std_dev_1"],
                        context["custom_demand_mean_2"],
                        context["custom_demand_std_dev_2"],
                        context["standard_demand_intercept"],
                        context["standard_demand_slope"],
                        total_iterations,
                        self.sim_version,
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to save evaluation: {e}")
            return False

        logger.info(f"Added evaluation to memory (fitness: {fitness:.2f}, total runs: {stats.total_runs + 1})")
        return True

    def clear(self) -> int:
        """清除所有紀錄

        Returns:
            刪除的紀錄數
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM memory_evaluations")
            conn.commit()
            count = cursor.rowcount
        logger.info(f"Memory cleared ({count} records)")
        return count

    def prune_outdated(self) -> int:
        """刪除其他模擬器版本的紀錄

        Returns:
            刪除的紀錄數
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM memory_evaluations WHERE sim_version != ?",
                (self.sim_version,),
            )
            conn.commit()
            count = cursor.rowcount
        if count:
            logger.info(f"Pruned {count} records from other simulator versions")
        return count

    # ==================== 查詢 ====================

    def load_all(self) -> List[MemoryEvaluation]:
        """讀取目前版本的所有紀錄（依建立順序）"""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM memory_evaluations WHERE sim_version = ? ORDER BY id",
                (self.sim_version,),
            ).fetchall()
        return [self._row_to_evaluation(row) for row in rows]

    def matching_evaluations(
        self,
        demand_context: DemandContext,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> List[MemoryEvaluation]:
        """回傳需求情境相似度達門檻的紀錄"""
        return [
            evaluation for evaluation in self.load_all()
            if demand_context.similarity(evaluation.demand_context) >= similarity_threshold
        ]

    def query_context(
        self,
        demand_context: DemandContext,
        top_n: int = 10,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> MemoryContextStats:
        """查詢符合需求情境的歷史紀錄

        Args:
            demand_context: 需求情境
            top_n: 最多回傳的政策數
            similarity_threshold: 相似度門檻，1.0 代表完全相同

        Returns:
            MemoryContextStats
        """
        matches = self.matching_evaluations(demand_context, similarity_threshold)
        if not matches:
            return MemoryContextStats()

        matches.sort(key=lambda e: e.fitness, reverse=True)
        fitness_values = [e.fitness for e in matches]
        return MemoryContextStats(
            count=len(matches),
            average_fitness=sum(fitness_values) / len(fitness_values),
            top_fitness=fitness_values[0],
            top_policies=[e.policy for e in matches[:top_n]],
        )

    def stats(self) -> MemoryStats:
        """目前版本的整體統計"""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total_runs,
                       AVG(fitness) AS average_fitness,
                       MAX(fitness) AS top_fitness,
                       MAX(created_at) AS last_updated
                FROM memory_evaluations
                WHERE sim_version = ?
                """,
                (self.sim_version,),
            ).fetchone()
        if not row["total_runs"]:
            return MemoryStats()
        return MemoryStats(
            total_runs=row["total_runs"],
            average_fitness=row["average_fitness"],
            top_fitness=row["top_fitness"],
            last_updated=row["last_updated"],
        )

    def _row_to_evaluation(self, row: sqlite3.Row) -> MemoryEvaluation:
        """將資料庫行轉換為 MemoryEvaluation"""
        context = DemandContext(
            custom_demand_mean_1=row["custom_demand_mean_1"],
            custom_demand_std_dev_1=row["custom_demand_std_dev_1"],
            custom_demand_mean_2=row["custom_demand_mean_2"],
            custom_demand_std_dev_2=row["custom_demand_std_dev_2"],
            standard_demand_intercept=row["standard_demand_intercept"],
            standard_demand_slope=row["standard_demand_slope"],
        )
        policy_data: Dict[str, Any] = json.loads(row["policy"])
        return MemoryEvaluation(
            run_id=row["run_id"],
            policy=PolicyParameters.from_dict(policy_data),
            fitness=row["fitness"],
            net_worth=row["net_worth"],
            demand_context=context,
            total_iterations=row["total_iterations"],
            sim_version=row["sim_version"],
            created_at=row["created_at"],
        )
