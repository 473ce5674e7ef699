# output模块初始化

from .console import ResultPrinter, sort_results
from .writer import write_proxies_to_yaml, write_results_to_csv

__all__ = ['ResultPrinter', 'sort_results', 'write_proxies_to_yaml', 'write_results_to_csv']
