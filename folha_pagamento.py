"""
Cálculos de folha de pagamento.

Funções puras para INSS, IRRF, adicionais, DSR, férias, 13º salário,
rescisão e encargos patronais. As tabelas e alíquotas vêm da seção
``payroll`` do ``config.yaml`` (valores de 2024 como padrão).
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from config import get_config
from exceptions import FolhaPagamentoError

logger = logging.getLogger(__name__)

SALARIO_MINIMO = get_config('payroll.minimum_wage', 1412.00)
HORAS_MENSAIS = get_config('payroll.standard_monthly_hours', 220)
ALIQUOTA_FGTS = get_config('payroll.fgts_rate', 0.08)
ALIQUOTA_INSS_PATRONAL = get_config('payroll.inss_patronal_rate', 0.20)
ALIQUOTA_RAT = get_config('payroll.rat_rate', 0.03)
ALIQUOTA_TERCEIROS = get_config('payroll.terceiros_rate', 0.058)
DEDUCAO_DEPENDENTE = get_config('payroll.irrf_dependent_deduction', 189.59)
TETO_INSS = get_config('payroll.inss_ceiling', 908.85)

# [limite, alíquota, parcela acumulada das faixas anteriores]
FAIXAS_INSS = get_config('payroll.inss_brackets', [
    [1412.00, 0.075, 0.0],
    [2666.68, 0.09, 105.90],
    [4000.03, 0.12, 218.82],
    [7786.02, 0.14, 378.82],
])

# [limite, alíquota, parcela a deduzir]; limite None = sem teto
FAIXAS_IRRF = get_config('payroll.irrf_brackets', [
    [2259.20, 0.0, 0.0],
    [2826.65, 0.075, 169.44],
    [3751.05, 0.15, 381.44],
    [4664.68, 0.225, 662.77],
    [None, 0.275, 896.00],
])

# Alíquota única aplicada a férias, 13º e rescisão
ALIQUOTA_INSS_SIMPLIFICADA = 0.14


class GrauInsalubridade(Enum):
    """Grau de insalubridade e percentual sobre o salário mínimo."""
    MINIMO = 'LOW'
    MEDIO = 'MEDIUM'
    MAXIMO = 'HIGH'

    @property
    def percentual(self) -> float:
        return {'LOW': 0.10, 'MEDIUM': 0.20, 'HIGH': 0.40}[self.value]

    @classmethod
    def parse(cls, valor) -> Optional['GrauInsalubridade']:
        if valor is None or valor == '':
            return None
        if isinstance(valor, cls):
            return valor
        texto = str(valor).strip().upper()
        for grau in cls:
            if texto in (grau.value, grau.name):
                return grau
        raise FolhaPagamentoError(f"Grau de insalubridade desconhecido: {valor}")


class TipoRescisao(Enum):
    PEDIDO_DEMISSAO = 'RESIGNATION'
    JUSTA_CAUSA = 'DISMISSAL_WITH_CAUSE'
    SEM_JUSTA_CAUSA = 'DISMISSAL_NO_CAUSE'
    ACORDO = 'MUTUAL_AGREEMENT'


# =========================
# ESTRUTURAS
# =========================

@dataclass
class Evento:
    """Evento da folha (provento ou desconto)."""
    codigo: str
    descricao: str
    valor: float
    referencia: Optional[float] = None
    desconto: bool = False

    @property
    def tipo(self) -> str:
        return 'DESCONTO' if self.desconto else 'PROVENTO'


@dataclass
class Ponto:
    """Apuração de ponto do mês."""
    horas_trabalhadas: float = 0
    horas_extras_50: float = 0
    horas_extras_100: float = 0
    horas_noturnas: float = 0
    faltas: float = 0


@dataclass
class Funcionario:
    salario_base: float
    grau_insalubridade: Optional[Union[GrauInsalubridade, str]] = None
    periculosidade: bool = False
    dependentes: int = 0
    outros_descontos: float = 0
    ponto: Optional[Ponto] = None


@dataclass
class OpcoesFolha:
    horas_extras: bool = True
    adicional_noturno: bool = True
    insalubridade: bool = True
    periculosidade: bool = True
    dsr: bool = True


@dataclass
class DiasMes:
    dias_uteis: int
    domingos_feriados: int
    dias_no_mes: int


@dataclass
class ResultadoFolha:
    eventos: List[Evento]
    salario_bruto: float
    inss: float
    irrf: float
    fgts: float
    total_descontos: float
    salario_liquido: float
    horas_trabalhadas: float
    horas_extras: float
    horas_noturnas: float
    faltas: float
    dias_trabalhados: float


@dataclass
class ResultadoFerias:
    dias_gozados: int
    salario_diario: float
    valor_ferias: float
    terco_constitucional: float
    valor_abono: float
    total_bruto: float
    inss: float
    irrf: float
    total_liquido: float


@dataclass
class ResultadoDecimoTerceiro:
    meses_trabalhados: int
    valor_bruto: float
    inss: float
    irrf: float
    valor_liquido: float


@dataclass
class ResultadoRescisao:
    saldo_salario: float
    aviso_previo: float
    ferias_vencidas: float
    ferias_proporcionais: float
    terco_ferias: float
    decimo_terceiro_proporcional: float
    saldo_fgts: float
    multa_fgts: float
    total_bruto: float
    inss: float
    irrf: float
    total_descontos: float
    total_liquido: float
    seguro_desemprego: bool
    parcelas_seguro_desemprego: int


@dataclass
class ResumoEncargos:
    inss_empregados: float = 0
    irrf_empregados: float = 0
    fgts: float = 0
    inss_patronal: float = 0
    rat: float = 0
    terceiros: float = 0
    provisao_ferias: float = 0
    provisao_13: float = 0

    @property
    def total_encargos(self) -> float:
        return self.fgts + self.inss_patronal + self.rat + self.terceiros

    @property
    def provisao_total(self) -> float:
        return self.provisao_ferias + self.provisao_13


# =========================
# FUNÇÕES DE CÁLCULO
# =========================

def _conferir_salario(salario: float) -> float:
    salario = float(salario)
    if salario < 0:
        raise FolhaPagamentoError(f"Salário negativo: {salario}")
    return salario


def calcular_inss(salario: float) -> float:
    """
    INSS do empregado pela tabela progressiva.

    Example:
        >>> round(calcular_inss(3000), 2)
        258.82
    """
    salario = _conferir_salario(salario)
    limite_anterior = 0.0
    for limite, aliquota, acumulado in FAIXAS_INSS:
        if salario <= limite:
            return acumulado + (salario - limite_anterior) * aliquota
        limite_anterior = limite
    return TETO_INSS


def calcular_irrf(base_calculo: float, dependentes: int = 0) -> float:
    """
    IRRF mensal com dedução por dependente.

    Args:
        base_calculo: Salário bruto menos INSS
        dependentes: Quantidade de dependentes

    Returns:
        Imposto devido (nunca negativo)
    """
    base = float(base_calculo) - dependentes * DEDUCAO_DEPENDENTE
    for limite, aliquota, deducao in FAIXAS_IRRF:
        if limite is None or base <= limite:
            return max(0.0, base * aliquota - deducao)
    return 0.0


def calcular_irrf_simples(base_calculo: float) -> float:
    """IRRF sem dedução de dependentes (férias, 13º e rescisão)."""
    return calcular_irrf(base_calculo, 0)


def calcular_dsr(horas_extras: float, valor_hora_extra: float,
                 dias_uteis: int, domingos_feriados: int) -> float:
    """DSR sobre horas extras."""
    if dias_uteis == 0:
        return 0.0
    return horas_extras * valor_hora_extra * domingos_feriados / dias_uteis


def calcular_adicional_noturno(horas_noturnas: float, valor_hora: float) -> float:
    """Adicional de 20% sobre a hora normal (22h às 5h)."""
    return horas_noturnas * valor_hora * 0.2


def calcular_reducao_hora_noturna(horas_noturnas: float) -> float:
    """Horas a mais devidas pela hora noturna reduzida de 52min30s."""
    return horas_noturnas * (60 / 52.5 - 1)


def calcular_insalubridade(grau, salario_minimo: float = SALARIO_MINIMO) -> float:
    """Insalubridade sobre o salário mínimo: 10%, 20% ou 40%."""
    grau = GrauInsalubridade.parse(grau)
    if grau is None:
        return 0.0
    return salario_minimo * grau.percentual


def calcular_periculosidade(salario_base: float, periculosidade: bool) -> float:
    """Periculosidade de 30% sobre o salário base."""
    return salario_base * 0.3 if periculosidade else 0.0


def calcular_dias_aviso_previo(admissao: date, demissao: date) -> int:
    """Aviso prévio proporcional: 30 dias + 3 por ano completo, até 90."""
    anos = int((demissao - admissao).days // 365.25)
    return min(90, max(30, 30 + anos * 3))


def calcular_meses_trabalhados_no_ano(admissao: date, ano: int) -> int:
    """Meses do ano contados para o 13º (mês de admissão incluído)."""
    if admissao.year > ano:
        return 0
    if admissao > date(ano, 1, 1):
        return 13 - admissao.month
    return 12


def calcular_dias_uteis(ano: int, mes: int, feriados: int = 0) -> DiasMes:
    """
    Dias úteis (segunda a sexta) e domingos/feriados do mês.

    Sábados não entram em nenhuma das contagens.
    """
    dias_no_mes = calendar.monthrange(ano, mes)[1]
    dias_uteis = 0
    domingos = 0
    for dia in range(1, dias_no_mes + 1):
        dia_semana = date(ano, mes, dia).weekday()
        if dia_semana == 6:
            domingos += 1
        elif dia_semana != 5:
            dias_uteis += 1
    return DiasMes(dias_uteis, domingos + feriados, dias_no_mes)


def calcular_folha_funcionario(funcionario: Funcionario, opcoes: OpcoesFolha,
                               dias: DiasMes) -> ResultadoFolha:
    """
    Calcula proventos e descontos de um funcionário no mês.

    Eventos: 001 salário base, 002/003 horas extras 50%/100%, 004 adicional
    noturno, 005 DSR, 006 insalubridade, 007 periculosidade, 101 faltas,
    201 INSS e 202 IRRF.

    Args:
        funcionario: Dados contratuais e ponto do mês
        opcoes: Quais adicionais considerar
        dias: Calendário do mês (ver ``calcular_dias_uteis``)

    Returns:
        ResultadoFolha com eventos, bruto, descontos, FGTS e líquido

    Raises:
        FolhaPagamentoError: Salário negativo ou grau de insalubridade inválido
    """
    salario_base = _conferir_salario(funcionario.salario_base)
    valor_hora = salario_base / HORAS_MENSAIS
    ponto = funcionario.ponto or Ponto()
    grau = GrauInsalubridade.parse(funcionario.grau_insalubridade)

    eventos = [Evento('001', 'Salário Base', salario_base)]
    bruto = salario_base

    valor_he50 = ponto.horas_extras_50 * valor_hora * 1.5
    valor_he100 = ponto.horas_extras_100 * valor_hora * 2

    if opcoes.horas_extras and ponto.horas_extras_50 > 0:
        bruto += valor_he50
        eventos.append(Evento('002', 'Horas Extras 50%', valor_he50, ponto.horas_extras_50))

    if opcoes.horas_extras and ponto.horas_extras_100 > 0:
        bruto += valor_he100
        eventos.append(Evento('003', 'Horas Extras 100%', valor_he100, ponto.horas_extras_100))

    if opcoes.adicional_noturno and ponto.horas_noturnas > 0:
        valor = (
            calcular_adicional_noturno(ponto.horas_noturnas, valor_hora) +
            calcular_reducao_hora_noturna(ponto.horas_noturnas) * valor_hora
        )
        bruto += valor
        eventos.append(Evento('004', 'Adicional Noturno', valor, ponto.horas_noturnas))

    total_horas_extras = ponto.horas_extras_50 + ponto.horas_extras_100
    if opcoes.dsr and opcoes.horas_extras and total_horas_extras > 0:
        valor = calcular_dsr(
            total_horas_extras,
            (valor_he50 + valor_he100) / total_horas_extras,
            dias.dias_uteis,
            dias.domingos_feriados,
        )
        if valor > 0:
            bruto += valor
            eventos.append(Evento('005', 'DSR sobre Horas Extras', valor))

    if opcoes.insalubridade and grau is not None:
        valor = calcular_insalubridade(grau)
        bruto += valor
        eventos.append(Evento('006', f'Insalubridade ({grau.value})', valor))

    if opcoes.periculosidade and funcionario.periculosidade:
        valor = calcular_periculosidade(salario_base, True)
        bruto += valor
        eventos.append(Evento('007', 'Periculosidade 30%', valor, 30))

    if ponto.faltas > 0:
        valor = salario_base / 30 * ponto.faltas
        bruto -= valor
        eventos.append(Evento('101', 'Faltas', valor, ponto.faltas, desconto=True))

    inss = calcular_inss(max(bruto, 0.0))
    eventos.append(Evento('201', 'INSS', inss, desconto=True))

    irrf = calcular_irrf(bruto - inss, funcionario.dependentes)
    if irrf > 0:
        eventos.append(Evento('202', 'IRRF', irrf, desconto=True))

    fgts = bruto * ALIQUOTA_FGTS
    total_descontos = inss + irrf + funcionario.outros_descontos

    return ResultadoFolha(
        eventos=eventos,
        salario_bruto=bruto,
        inss=inss,
        irrf=irrf,
        fgts=fgts,
        total_descontos=total_descontos,
        salario_liquido=bruto - total_descontos,
        horas_trabalhadas=ponto.horas_trabalhadas,
        horas_extras=total_horas_extras,
        horas_noturnas=ponto.horas_noturnas,
        faltas=ponto.faltas,
        dias_trabalhados=dias.dias_no_mes - ponto.faltas,
    )


def _inss_simplificado(base: float) -> float:
    return min(base * ALIQUOTA_INSS_SIMPLIFICADA, TETO_INSS)


def calcular_ferias(salario_base: float, total_dias: int = 30, dias_vendidos: int = 0) -> ResultadoFerias:
    """
    Férias com 1/3 constitucional e abono pecuniário (dias vendidos + 1/3).

    Raises:
        FolhaPagamentoError: Se os dias vendidos excederem o total de dias
    """
    salario_base = _conferir_salario(salario_base)
    if dias_vendidos < 0 or dias_vendidos > total_dias:
        raise FolhaPagamentoError(
            f"Dias vendidos ({dias_vendidos}) incompatíveis com o total de férias ({total_dias})"
        )

    dias_gozados = total_dias - dias_vendidos
    salario_diario = salario_base / 30
    valor_ferias = salario_diario * dias_gozados
    terco = valor_ferias / 3
    abono = salario_diario * dias_vendidos * (4 / 3)
    bruto = valor_ferias + terco + abono

    inss = _inss_simplificado(bruto)
    irrf = calcular_irrf_simples(bruto - inss)

    return ResultadoFerias(
        dias_gozados=dias_gozados,
        salario_diario=salario_diario,
        valor_ferias=valor_ferias,
        terco_constitucional=terco,
        valor_abono=abono,
        total_bruto=bruto,
        inss=inss,
        irrf=irrf,
        total_liquido=bruto - inss - irrf,
    )


def calcular_decimo_terceiro_primeira_parcela(salario: float, admissao: date,
                                              ano: int) -> ResultadoDecimoTerceiro:
    """Primeira parcela: metade do 13º proporcional, sem descontos."""
    salario = _conferir_salario(salario)
    meses = calcular_meses_trabalhados_no_ano(admissao, ano)
    bruto = salario / 12 * meses * 0.5
    return ResultadoDecimoTerceiro(meses, bruto, 0.0, 0.0, bruto)


def calcular_decimo_terceiro_segunda_parcela(salario: float, admissao: date, ano: int,
                                             primeira_parcela: float) -> ResultadoDecimoTerceiro:
    """Segunda parcela: saldo do 13º com INSS e IRRF sobre o valor integral."""
    salario = _conferir_salario(salario)
    meses = calcular_meses_trabalhados_no_ano(admissao, ano)
    total = salario / 12 * meses
    bruto = total - primeira_parcela

    inss = _inss_simplificado(total)
    irrf = calcular_irrf_simples(total - inss)

    return ResultadoDecimoTerceiro(meses, bruto, inss, irrf, bruto - inss - irrf)


def calcular_rescisao(salario_base: float, admissao: date, demissao: date,
                      tipo: Union[TipoRescisao, str], dias_aviso: Optional[int] = None,
                      aviso_indenizado: bool = True) -> ResultadoRescisao:
    """
    Verbas rescisórias.

    Args:
        salario_base: Último salário
        admissao: Data de admissão
        demissao: Data de desligamento
        tipo: Tipo de rescisão
        dias_aviso: Dias de aviso prévio (padrão: proporcional ao tempo de casa)
        aviso_indenizado: Aviso prévio indenizado

    Returns:
        ResultadoRescisao com todas as verbas, descontos e seguro-desemprego
    """
    salario_base = _conferir_salario(salario_base)
    tipo = TipoRescisao(tipo) if not isinstance(tipo, TipoRescisao) else tipo
    if demissao < admissao:
        raise FolhaPagamentoError("Data de demissão anterior à admissão")
    if dias_aviso is None:
        dias_aviso = calcular_dias_aviso_previo(admissao, demissao)

    salario_diario = salario_base / 30
    meses_casa = (demissao - admissao).days // 30

    saldo_salario = salario_diario * demissao.day

    aviso_previo = 0.0
    if aviso_indenizado and tipo not in (TipoRescisao.PEDIDO_DEMISSAO, TipoRescisao.JUSTA_CAUSA):
        aviso_previo = salario_diario * dias_aviso

    ferias_vencidas = salario_base if meses_casa // 12 > 0 else 0.0
    ferias_proporcionais = salario_base / 12 * (meses_casa % 12)
    terco_ferias = (ferias_vencidas + ferias_proporcionais) / 3

    decimo_terceiro = 0.0 if tipo is TipoRescisao.JUSTA_CAUSA else salario_base / 12 * demissao.month

    saldo_fgts = salario_base * ALIQUOTA_FGTS * meses_casa
    multa_fgts = {
        TipoRescisao.SEM_JUSTA_CAUSA: 0.4,
        TipoRescisao.ACORDO: 0.2,
    }.get(tipo, 0.0) * saldo_fgts

    total_bruto = (
        saldo_salario + aviso_previo + ferias_vencidas + ferias_proporcionais +
        terco_ferias + decimo_terceiro + multa_fgts
    )

    base_inss = saldo_salario + aviso_previo
    inss = _inss_simplificado(base_inss)
    irrf = calcular_irrf_simples(base_inss - inss)
    total_descontos = inss + irrf

    seguro = tipo is TipoRescisao.SEM_JUSTA_CAUSA and meses_casa >= 12
    parcelas = min(5, meses_casa // 6) if seguro else 0

    logger.debug(f"Rescisão {tipo.value}: {meses_casa} meses, bruto {total_bruto:.2f}")

    return ResultadoRescisao(
        saldo_salario=saldo_salario,
        aviso_previo=aviso_previo,
        ferias_vencidas=ferias_vencidas,
        ferias_proporcionais=ferias_proporcionais,
        terco_ferias=terco_ferias,
        decimo_terceiro_proporcional=decimo_terceiro,
        saldo_fgts=saldo_fgts,
        multa_fgts=multa_fgts,
        total_bruto=total_bruto,
        inss=inss,
        irrf=irrf,
        total_descontos=total_descontos,
        total_liquido=total_bruto - total_descontos,
        seguro_desemprego=seguro,
        parcelas_seguro_desemprego=parcelas,
    )


def calcular_resumo_encargos(folhas: Iterable[Union[ResultadoFolha, Dict[str, float]]]) -> ResumoEncargos:
    """
    Encargos patronais e provisões de uma folha.

    Aceita ``ResultadoFolha`` ou dicionários com ``salario_bruto``, ``inss``,
    ``irrf`` e ``fgts``.
    """
    resumo = ResumoEncargos()
    for folha in folhas:
        if isinstance(folha, ResultadoFolha):
            bruto, inss, irrf, fgts = folha.salario_bruto, folha.inss, folha.irrf, folha.fgts
        else:
            bruto = float(folha['salario_bruto'])
            inss = float(folha.get('inss', 0))
            irrf = float(folha.get('irrf', 0))
            fgts = float(folha.get('fgts', 0))

        resumo.inss_empregados += inss
        resumo.irrf_empregados += irrf
        resumo.fgts += fgts
        resumo.inss_patronal += bruto * ALIQUOTA_INSS_PATRONAL
        resumo.rat += bruto * ALIQUOTA_RAT
        resumo.terceiros += bruto * ALIQUOTA_TERCEIROS
        resumo.provisao_ferias += bruto / 12 + bruto / 12 / 3
        resumo.provisao_13 += bruto / 12

    return resumo
